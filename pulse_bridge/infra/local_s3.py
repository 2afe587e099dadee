"""
Local stand-in for the boto3 S3 client, backed by a directory tree.

Each sub-directory of the root path is a bucket; every file below it is an
object whose key is its "/"-joined path relative to the bucket directory.
Versions, owners, ACLs and regions are ignored. Operations without a local
meaning raise NotImplementedError.
"""

import copy
import hashlib
import io
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..domain.ports import BucketDoesNotExistError


logger = logging.getLogger(__name__)


@dataclass
class LocalS3Object:
    bucket: str
    key: str
    data: bytes
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def etag(self) -> str:
        return self.metadata.get("ETag", "")

    def as_response(self) -> Dict[str, Any]:
        return {
            "Body": io.BytesIO(self.data),
            "ContentLength": len(self.data),
            "ETag": self.etag,
            "Metadata": dict(self.metadata.get("Metadata", {})),
            "ContentEncoding": self.metadata.get("ContentEncoding")
        }


def _local_object(bucket: str, key: str, data: bytes, metadata: Dict[str, Any]) -> LocalS3Object:
    md5 = hashlib.md5(data).hexdigest()
    metadata = dict(metadata)
    metadata["ContentMD5"] = md5
    metadata["ETag"] = md5
    return LocalS3Object(bucket=bucket, key=key, data=data, metadata=metadata)


class LocalS3Client:
    """
    In-memory S3 client initialised from ``path``.

    With ``rescan`` the directory tree is re-read every
    ``rescan_interval_seconds`` on a single daemon thread. With
    ``write_to_disk`` puts and deletes are mirrored to the tree.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        write_to_disk: bool = False,
        rescan: bool = False,
        rescan_interval_seconds: int = 30
    ):
        self.path = Path(path) if path else None
        self.write_to_disk = write_to_disk
        self.rescan_interval_seconds = rescan_interval_seconds

        self._buckets: Dict[str, Dict[str, LocalS3Object]] = {}
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._rescan_thread: Optional[threading.Thread] = None

        self._initialize_buckets()

        if rescan:
            self._rescan_thread = threading.Thread(
                target=self._rescan_loop, name="local-s3-rescan", daemon=True
            )
            self._rescan_thread.start()

    def close(self) -> None:
        self._stop_event.set()
        if self._rescan_thread is not None:
            self._rescan_thread.join(timeout=1.0)

    def _rescan_loop(self) -> None:
        while not self._stop_event.wait(self.rescan_interval_seconds):
            logger.info("Refreshing buckets from file system")
            try:
                self._initialize_buckets()
            except (OSError, ValueError) as e:
                logger.error(f"Failed to refresh local S3 buckets: {e}")

    def _initialize_buckets(self) -> None:
        """
        Rebuild the bucket map from the directory tree and swap it in, so
        files and bucket directories removed from disk drop out.

        Raises:
            ValueError: If the path is not a directory
        """
        if self.path is None:
            logger.info("No local S3 assets configured.")
            return

        if not self.path.is_dir():
            raise ValueError("Path to local S3 assets is not a directory.")

        buckets: Dict[str, Dict[str, LocalS3Object]] = {}
        for bucket_dir in sorted(self.path.iterdir()):
            if not bucket_dir.is_dir():
                continue
            logger.info(f"Found local S3 bucket called {bucket_dir.name}")
            entries: Dict[str, LocalS3Object] = {}
            self._add_files_to_bucket(bucket_dir.name, bucket_dir, bucket_dir, entries)
            buckets[bucket_dir.name] = entries

        with self._lock:
            self._buckets = buckets

    def _add_files_to_bucket(
        self,
        bucket: str,
        directory: Path,
        bucket_root: Path,
        entries: Dict[str, LocalS3Object]
    ) -> None:
        for file in sorted(directory.iterdir()):
            if file.is_dir():
                self._add_files_to_bucket(bucket, file, bucket_root, entries)
                continue
            key = "/".join(file.relative_to(bucket_root).parts)
            logger.info(f"Found local S3 asset in bucket {bucket} at key {key}")
            entries[key] = _local_object(bucket, key, file.read_bytes(), {})

    def _bucket(self, bucket: str, message: str = "Bucket doesn't exist. bucket=") -> Dict[str, LocalS3Object]:
        entries = self._buckets.get(bucket)
        if entries is None:
            raise BucketDoesNotExistError(f"{message}{bucket}")
        return entries

    def _file_for(self, bucket: str, key: str) -> Path:
        return self.path.joinpath(bucket, *key.split("/"))

    def _store(self, bucket: str, key: str, data: bytes, metadata: Dict[str, Any]) -> LocalS3Object:
        obj = _local_object(bucket, key, data, metadata)
        with self._lock:
            self._bucket(bucket)[key] = obj

        if self.write_to_disk and self.path is not None:
            output_file = self._file_for(bucket, key)
            try:
                output_file.parent.mkdir(parents=True, exist_ok=True)
                output_file.write_bytes(data)
            except OSError as e:
                logger.error(f"Problem persisting file: '{output_file.name}': {e}")
        return obj

    # --- buckets ---------------------------------------------------------

    def does_bucket_exist(self, Bucket: str) -> bool:
        return Bucket in self._buckets

    def list_buckets(self) -> Dict[str, Any]:
        with self._lock:
            return {"Buckets": [{"Name": name} for name in self._buckets]}

    def create_bucket(self, Bucket: str, **kwargs: Any) -> Dict[str, Any]:
        with self._lock:
            self._buckets[Bucket] = {}
        return {"Location": f"/{Bucket}"}

    def delete_bucket(self, Bucket: str) -> None:
        with self._lock:
            self._buckets.pop(Bucket, None)

    def get_bucket_versioning(self, Bucket: str) -> Dict[str, str]:
        return {"Status": "Off"}

    # --- objects ---------------------------------------------------------

    def list_objects(self, Bucket: str, Prefix: Optional[str] = None, **kwargs: Any) -> Dict[str, Any]:
        """List objects whose key starts with ``Prefix``; every object when no prefix is given."""
        contents: List[Dict[str, Any]] = []
        with self._lock:
            entries = self._buckets.get(Bucket) or {}
            for obj in entries.values():
                if Prefix is not None and not obj.key.startswith(Prefix):
                    continue
                contents.append({"Key": obj.key, "ETag": obj.etag, "Size": len(obj.data)})
        return {"Name": Bucket, "Prefix": Prefix or "", "Contents": contents}

    def get_object(self, Bucket: str, Key: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        """
        Returns:
            Object response, or None when the key does not exist

        Raises:
            BucketDoesNotExistError: If the bucket does not exist
        """
        with self._lock:
            obj = self._bucket(Bucket).get(Key)
        return obj.as_response() if obj is not None else None

    def head_object(self, Bucket: str, Key: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        with self._lock:
            obj = self._bucket(Bucket).get(Key)
        if obj is None:
            return None
        return {"ContentLength": len(obj.data), "ETag": obj.etag, "Metadata": dict(obj.metadata.get("Metadata", {}))}

    get_object_metadata = head_object

    def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: Union[bytes, str, Any] = b"",
        Metadata: Optional[Dict[str, str]] = None,
        ContentEncoding: Optional[str] = None,
        **kwargs: Any
    ) -> Dict[str, Any]:
        """
        Store bytes, a str (as UTF-8) or the contents of a file object.

        Raises:
            BucketDoesNotExistError: If the bucket does not exist
        """
        self._bucket(Bucket)

        if isinstance(Body, str):
            data = Body.encode("utf-8")
            ContentEncoding = ContentEncoding or "UTF-8"
        elif isinstance(Body, (bytes, bytearray)):
            data = bytes(Body)
        else:
            data = Body.read()

        metadata: Dict[str, Any] = {"Metadata": dict(Metadata or {})}
        if ContentEncoding:
            metadata["ContentEncoding"] = ContentEncoding

        obj = self._store(Bucket, Key, data, metadata)
        return {"ETag": obj.etag, "ContentMD5": obj.metadata["ContentMD5"]}

    def copy_object(self, Bucket: str, Key: str, CopySource: Dict[str, str], **kwargs: Any) -> Optional[Dict[str, Any]]:
        """
        Returns:
            Copy result, or None when the source object does not exist

        Raises:
            BucketDoesNotExistError: If the source or destination bucket does not exist
        """
        with self._lock:
            source = self._bucket(CopySource["Bucket"]).get(CopySource["Key"])
            destination = self._bucket(Bucket, "Destination bucket doesn't exist. bucket=")
            if source is None:
                return None

            copied = LocalS3Object(
                bucket=Bucket,
                key=Key,
                data=source.data,
                metadata=copy.deepcopy(source.metadata)
            )
            destination[Key] = copied
        return {"CopyObjectResult": {"ETag": copied.etag}}

    def delete_object(self, Bucket: str, Key: str, **kwargs: Any) -> None:
        with self._lock:
            self._bucket(Bucket).pop(Key, None)

        if self.write_to_disk and self.path is not None:
            file_to_delete = self._file_for(Bucket, Key)
            try:
                file_to_delete.unlink()
            except OSError:
                logger.error(f"Failed to delete file: '{file_to_delete.name}'")

    def delete_objects(self, Bucket: str, Delete: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        deleted = []
        for entry in Delete.get("Objects", []):
            self.delete_object(Bucket=Bucket, Key=entry["Key"])
            deleted.append({"Key": entry["Key"]})
        return {"Deleted": deleted}

    def does_object_exist(self, Bucket: str, Key: str) -> bool:
        with self._lock:
            return Key in self._buckets.get(Bucket, {})

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)

        def _unsupported(*args, **kwargs):
            raise NotImplementedError(f"LocalS3Client does not support {name}")
        return _unsupported
