"""Read single entries of remote zip archives with HTTP range requests."""

from partialzip.Kernel import PUBLIC_VERSION as __version__
from partialzip.Archive import RemoteArchive, EntryInfo, listEntries, extract
