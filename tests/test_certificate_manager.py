from __future__ import annotations

import ssl

from core.certificate_manager import CertificateManager


def test_self_signed_certificate_is_generated_once(tmp_path):
    manager = CertificateManager(hostname="edge.local", certs_dir=tmp_path / "certs")
    assert manager.check_certificates_exist() is False

    context = manager.create_ssl_context()

    assert isinstance(context, ssl.SSLContext)
    assert manager.cert_path == tmp_path / "certs" / "edge.crt"
    assert manager.check_certificates_exist() is True
    assert 360 <= manager.get_certificate_days_remaining() <= 365

    first = manager.cert_path.read_bytes()
    assert manager.ensure_certificates_exist() is True
    assert manager.cert_path.read_bytes() == first


def test_configured_paths_are_used(tmp_path):
    manager = CertificateManager(
        cert_path=tmp_path / "custom.crt",
        key_path=tmp_path / "custom.key",
        certs_dir=tmp_path / "unused",
    )

    assert manager.get_certificate_days_remaining() == -1
    assert manager.create_ssl_context() is not None
    assert (tmp_path / "custom.crt").exists()
    assert (tmp_path / "custom.key").exists()
    assert not (tmp_path / "unused").exists()
