"""Azure Blob Storage manager for image attachments shared in the room.

BlobStorageManager manages the lifecycle of the async Blob Storage client:
initialization at startup, upload/delete during operation, and cleanup at
shutdown.
"""

import logging
from uuid import uuid4

from azure.identity.aio import DefaultAzureCredential
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient

logger = logging.getLogger(__name__)

ATTACHMENT_CONTAINER = "soc-attachments"

_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png"}


class BlobStorageManager:
    """Manages async Azure Blob Storage client for image attachments.

    Usage:
        manager = BlobStorageManager(account_url="https://mystorageaccount.blob.core.windows.net")
        await manager.initialize()
        url = await manager.upload_image(image_bytes, "photo.jpg", "image/jpeg", thread_id)
        await manager.delete_image(url)
        await manager.close()
    """

    def __init__(self, account_url: str) -> None:
        """Store config. Client is not yet created; call initialize()."""
        self._account_url = account_url
        self._credential: DefaultAzureCredential | None = None
        self._client: BlobServiceClient | None = None

    async def initialize(self) -> None:
        """Create the async Blob Storage client with Azure AD auth."""
        self._credential = DefaultAzureCredential()
        self._client = BlobServiceClient(
            account_url=self._account_url,
            credential=self._credential,
        )
        logger.info(
            "Blob Storage initialized: account_url=%s, container=%s",
            self._account_url,
            ATTACHMENT_CONTAINER,
        )

    async def upload_image(
        self,
        image_bytes: bytes,
        filename: str,
        content_type: str,
        thread_id: str,
    ) -> str:
        """Upload image bytes to Blob Storage and return the blob URL.

        Args:
            image_bytes: Raw image file bytes.
            filename: Original filename, kept in blob metadata.
            content_type: image/jpeg or image/png.
            thread_id: Conversation thread ID used as the blob path prefix.

        Returns:
            Full URL of the uploaded blob.
        """
        if self._client is None:
            msg = "BlobStorageManager not initialized; call initialize() first"
            raise RuntimeError(msg)

        extension = _EXTENSIONS.get(content_type, "bin")
        blob_name = f"{thread_id}/{uuid4()}.{extension}"
        container_client = self._client.get_container_client(ATTACHMENT_CONTAINER)
        blob_client = container_client.get_blob_client(blob_name)

        await blob_client.upload_blob(
            image_bytes,
            content_settings=ContentSettings(content_type=content_type),
            metadata={"filename": filename},
            overwrite=True,
        )

        logger.info("Uploaded image blob: %s (%d bytes)", blob_name, len(image_bytes))
        return blob_client.url

    async def delete_image(self, blob_url: str) -> None:
        """Delete a blob by its full URL.

        Non-fatal: logs warning on failure since orphaned blobs are harmless.
        """
        if self._client is None:
            logger.warning("BlobStorageManager not initialized, skipping delete")
            return

        try:
            container_and_blob = blob_url.split(f"{ATTACHMENT_CONTAINER}/", 1)
            if len(container_and_blob) < 2:
                logger.warning("Could not parse blob name from URL: %s", blob_url)
                return

            blob_name = container_and_blob[1]
            container_client = self._client.get_container_client(ATTACHMENT_CONTAINER)
            blob_client = container_client.get_blob_client(blob_name)
            await blob_client.delete_blob()
            logger.info("Deleted image blob: %s", blob_name)
        except Exception:
            logger.warning("Failed to delete blob: %s", blob_url, exc_info=True)

    async def close(self) -> None:
        """Close the Blob Storage client and credential."""
        if self._client is not None:
            await self._client.close()
            logger.info("Blob Storage client closed")
        if self._credential is not None:
            await self._credential.close()
