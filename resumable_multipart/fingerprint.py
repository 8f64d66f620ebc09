"""
File fingerprinting for unique identification of uploads.

Uses an MD5 hash of the file's identity attributes and upload parameters, so
the same file uploaded with the same intent maps to the same stored track.
"""

import hashlib
import json

from resumable_multipart.models import FileIdentity


class Fingerprint:
    """
    Generate stable fingerprints for files to enable resumable uploads.

    The fingerprint covers name, size, content type, modification time and
    upload parameters. File content is not read.
    """

    def get_fingerprint(self, identity: FileIdentity) -> str:
        """
        Generate a fingerprint for a file identity.

        Args:
            identity: File identity attributes plus upload parameters

        Returns:
            str: MD5 hex digest of the identity's canonical JSON form
        """
        canonical = json.dumps(identity.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()
