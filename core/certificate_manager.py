# certificate_manager.py
import ipaddress
import logging
import ssl
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)


class CertificateManager:
    """TLS сертификат для слушающего сокета: заданный в конфиге или самоподписанный"""

    def __init__(self, cert_path: Optional[Union[str, Path]] = None,
                 key_path: Optional[Union[str, Path]] = None,
                 hostname: str = "localhost",
                 certs_dir: Optional[Path] = None):
        if certs_dir is None:
            from core.config_manager import get_app_data_dir
            certs_dir = get_app_data_dir() / "certificates"

        self.hostname = hostname
        self.cert_path = Path(cert_path) if cert_path else certs_dir / "edge.crt"
        self.key_path = Path(key_path) if key_path else certs_dir / "edge.key"

    def generate_self_signed_certificate(self) -> bool:
        """Генерирует самоподписанный сертификат для hostname"""
        try:
            self.cert_path.parent.mkdir(parents=True, exist_ok=True)
            self.key_path.parent.mkdir(parents=True, exist_ok=True)

            private_key = rsa.generate_private_key(
                public_exponent=65537,
                key_size=2048,
            )

            subject = issuer = x509.Name([
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Interstellar"),
                x509.NameAttribute(NameOID.COMMON_NAME, self.hostname),
            ])

            now = datetime.now(timezone.utc)
            cert_builder = x509.CertificateBuilder().subject_name(
                subject
            ).issuer_name(
                issuer
            ).public_key(
                private_key.public_key()
            ).serial_number(
                x509.random_serial_number()
            ).not_valid_before(
                now
            ).not_valid_after(
                now + timedelta(days=365)
            )

            # Альтернативные имена
            san = x509.SubjectAlternativeName([
                x509.DNSName(self.hostname),
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
            ])
            cert_builder = cert_builder.add_extension(san, critical=False)

            cert = cert_builder.sign(private_key, hashes.SHA256())

            with open(self.key_path, "wb") as key_file:
                key_file.write(private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.TraditionalOpenSSL,
                    encryption_algorithm=serialization.NoEncryption(),
                ))

            with open(self.cert_path, "wb") as cert_file:
                cert_file.write(cert.public_bytes(
                    encoding=serialization.Encoding.PEM
                ))

            logger.info(f"✅ Самоподписанный сертификат создан: {self.cert_path}")
            return True

        except (OSError, ValueError) as e:
            logger.error(f"❌ Ошибка генерации сертификата: {e}")
            return False

    def check_certificates_exist(self) -> bool:
        """Проверяет существование сертификатов"""
        return self.cert_path.exists() and self.key_path.exists()

    def ensure_certificates_exist(self) -> bool:
        """Убеждается, что сертификаты существуют, и создает их при необходимости"""
        if not self.check_certificates_exist():
            logger.warning("Сертификаты не найдены, генерируем новые...")
            return self.generate_self_signed_certificate()
        return True

    def get_certificate_days_remaining(self) -> int:
        """Возвращает количество дней до истечения срока действия сертификата"""
        if not self.cert_path.exists():
            return -1

        with open(self.cert_path, "rb") as cert_file:
            cert = x509.load_pem_x509_certificate(cert_file.read())

        days_remaining = (cert.not_valid_after_utc - datetime.now(timezone.utc)).days
        return max(0, days_remaining)

    def create_ssl_context(self) -> Optional[ssl.SSLContext]:
        """SSL контекст сервера или None, если сертификат недоступен"""
        if not self.ensure_certificates_exist():
            return None

        days = self.get_certificate_days_remaining()
        if 0 <= days < 14:
            logger.warning(f"⚠️ Сертификат истекает через {days} дн.: {self.cert_path}")

        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(certfile=str(self.cert_path), keyfile=str(self.key_path))
        return ssl_context
