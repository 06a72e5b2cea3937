from clarifind.models.storage_entry import StorageEntry
from clarifind.models.profile import Profile

__all__ = ["StorageEntry", "Profile"]
