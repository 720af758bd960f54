import json
import hashlib
import zipfile
import os
import io
import logging
import subprocess
import tempfile

from app.core.errors import WalletServiceError

logger = logging.getLogger(__name__)

PKPASS_MEDIA_TYPE = "application/vnd.apple.pkpass"


class PassSigningError(WalletServiceError):
    status_code = 500


class PassBundleBuilder:
    """Builds a signed .pkpass archive from pass.json content and bundle files."""

    def __init__(
        self,
        cert_path: str,
        key_path: str,
        wwdr_path: str,
        cert_password: str | None = None,
    ):
        self.cert_path = cert_path
        self.key_path = key_path
        self.wwdr_path = wwdr_path
        self.cert_password = cert_password

    def _create_manifest(self, files: dict[str, bytes]) -> bytes:
        """Create manifest.json with SHA-1 hashes of all files."""
        manifest = {}
        for filename, content in files.items():
            manifest[filename] = hashlib.sha1(content).hexdigest()
        return json.dumps(manifest).encode("utf-8")

    def _sign_manifest(self, manifest_data: bytes) -> bytes:
        """Create PKCS#7 detached signature using OpenSSL CLI."""
        with tempfile.TemporaryDirectory() as tmpdir:
            manifest_path = os.path.join(tmpdir, "manifest.json")
            signature_path = os.path.join(tmpdir, "signature")

            with open(manifest_path, "wb") as f:
                f.write(manifest_data)

            cmd = [
                "openssl", "smime", "-sign",
                "-signer", self.cert_path,
                "-inkey", self.key_path,
                "-certfile", self.wwdr_path,
                "-in", manifest_path,
                "-out", signature_path,
                "-outform", "DER",
                "-binary",
            ]

            if self.cert_password:
                cmd.extend(["-passin", f"pass:{self.cert_password}"])

            try:
                result = subprocess.run(cmd, capture_output=True, text=True)
            except OSError as e:
                raise PassSigningError(f"Could not run openssl: {e}") from e
            if result.returncode != 0:
                logger.error(f"OpenSSL signing failed: {result.stderr.strip()}")
                raise PassSigningError("Pass signing failed")

            with open(signature_path, "rb") as f:
                return f.read()

    def build(self, pass_json: dict, files: dict[str, bytes]) -> bytes:
        """Generate a complete .pkpass file.

        Args:
            pass_json: The pass.json content
            files: Bundle files (images, localizations) keyed by path

        Returns:
            The zipped, signed pass as bytes
        """
        files = dict(files)
        files["pass.json"] = json.dumps(pass_json).encode("utf-8")

        manifest_data = self._create_manifest(files)
        files["manifest.json"] = manifest_data
        files["signature"] = self._sign_manifest(manifest_data)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for filename, content in files.items():
                zf.writestr(filename, content)

        return buffer.getvalue()


def create_pass_bundle_builder() -> PassBundleBuilder:
    """Factory function to create PassBundleBuilder from settings."""
    from app.core.config import settings

    return PassBundleBuilder(
        cert_path=settings.cert_path,
        key_path=settings.key_path,
        wwdr_path=settings.wwdr_path,
        cert_password=settings.cert_password,
    )
