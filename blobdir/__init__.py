"""
Index storage on top of a remote blob store, with a local disk cache.

blobdir lets a search index engine use a container in an object store as if it were a
local directory of index files. Each file is stored as one object. Files are written
to the local cache first and uploaded once they're complete, and downloaded in full the
first time they are opened for reading, so that all reads are served from local disk.

Index payload files can be compressed transparently with LZ4 while the directory still
reports their logical length. Writers on different machines coordinate through locks
that are built on conditional writes to the blob store.

Example:
```
store = LocalBlobService("/mnt/shared/blobs")

with BlobDirectory(store, "products", compression=CompressionPolicy(True)) as d:
    with d.make_lock("write.lock"):
        with d.create_output("segments.gen") as out:
            out.write(b"...")
```
"""

from .cache import LocalCacheStore
from .compression import CompressionPolicy
from .directory import BlobDirectory
from .errors import CacheIOError, FileNotInStoreError, LockTimeoutError
from .lock import DistributedLock, LockState
from .store import LocalBlobService, RpcBlobService
from .streams import InputStream, OutputStream

__all__ = [
    "BlobDirectory",
    "LocalCacheStore",
    "CompressionPolicy",
    "DistributedLock",
    "LockState",
    "InputStream",
    "OutputStream",
    "LocalBlobService",
    "RpcBlobService",
    "CacheIOError",
    "FileNotInStoreError",
    "LockTimeoutError",
]
