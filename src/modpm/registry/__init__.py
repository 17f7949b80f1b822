"""OCI registry access for modpm."""

from .credentials import CredentialManager, Credentials
from .oci_client import OciClient

__all__ = ["CredentialManager", "Credentials", "OciClient"]
