"""Module defining various global constants."""

# blobdir version
VERSION = "1.0.0"

# blobdir RPC protocol
# The major version must be identical on the blob store server and its clients.
PROTOCOL_VERSION = "1.0.0"

# Special exit code for when the command-line tool itself fails.
BLOBDIR_ERROR_CODE = 254

# Catalog used when none is specified.
DEFAULT_CATALOG = "index"

# Object metadata key holding the logical (uncompressed) length as a decimal string.
CACHED_LENGTH_KEY = "CachedLength"

# Object metadata key naming the codec of a compressed payload.
COMPRESSION_KEY = "Compression"

# Suffix of local cache entries that hold the payload as transmitted.
BLOB_SUFFIX = ".blob"

# Prefix of lock marker objects. Data file names never contain a slash.
LOCK_PREFIX = "__locks__/"
