"""
Ownership record format for the TXT registry.

An ownership record is a TXT record sitting next to a managed record. Its name
is derived from the managed record's name and its content carries the owner ID
and the resource that asked for the record.

Two content encodings exist:

    new:    heritage=kelpie-dns,kelpie-dns/owner=default,kelpie-dns/resource=docker/web
    legacy: heritage=kelpie-dns,owner=default,resource=docker/web

Both are read. Only the new one is written once ``new_format_only`` is enabled.
"""

import base64
import logging
from typing import Dict, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from kelpie_dns.exceptions import ConfigError
from kelpie_dns.models.models import HERITAGE, normalize_dnsname

ENCRYPTED_PREFIX = "v1:AES256:"
FORMAT_NEW = "new"
FORMAT_LEGACY = "legacy"
RECORD_TYPE_TEMPLATE = "%{record_type}"


class InvalidHeritageError(ValueError):
    """Content is not an ownership record written by Kelpie-DNS."""


def _strip_quotes(content: str) -> str:
    content = content.strip()
    if len(content) >= 2 and content.startswith('"') and content.endswith('"'):
        return content[1:-1]
    return content


def _split_pairs(content: str) -> Dict[str, str]:
    pairs = {}
    for part in content.split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        pairs[key.strip()] = value.strip()
    return pairs


def _decode_new(pairs: Dict[str, str]) -> Optional[Dict[str, str]]:
    label_prefix = f"{HERITAGE}/"
    labels = {
        key[len(label_prefix) :]: value
        for key, value in pairs.items()
        if key.startswith(label_prefix)
    }
    return labels or None


def _decode_legacy(pairs: Dict[str, str]) -> Optional[Dict[str, str]]:
    labels = {key: value for key, value in pairs.items() if key != "heritage"}
    return labels or None


# Tried in order; the first decoder producing labels wins
DECODERS = ((FORMAT_NEW, _decode_new), (FORMAT_LEGACY, _decode_legacy))


def parse_labels(content: str) -> Tuple[Dict[str, str], str]:
    """
    Decode ownership record content.

    Args:
        content: Plain text TXT content, quoted or not

    Returns:
        Tuple[Dict[str, str], str]: Decoded labels and the format they were found in

    Raises:
        InvalidHeritageError: If the content is not an ownership record
    """
    pairs = _split_pairs(_strip_quotes(content))
    if pairs.get("heritage") != HERITAGE:
        raise InvalidHeritageError(f"not a {HERITAGE} ownership record: '{content}'")
    for format_name, decoder in DECODERS:
        labels = decoder(pairs)
        if labels is not None:
            return labels, format_name
    raise InvalidHeritageError(f"ownership record carries no labels: '{content}'")


def format_labels(labels: Dict[str, str], new_format: bool = True) -> str:
    """
    Encode labels as ownership record content. Keys are sorted so the same
    labels always produce the same content.

    Args:
        labels: Labels to encode (owner, resource)
        new_format: Whether to use the heritage-prefixed key encoding

    Returns:
        str: TXT content
    """
    parts = [f"heritage={HERITAGE}"]
    for key in sorted(labels):
        if not labels[key]:
            continue
        name = f"{HERITAGE}/{key}" if new_format else key
        parts.append(f"{name}={labels[key]}")
    return ",".join(parts)


class OwnershipCodec:
    """
    Encodes and decodes ownership record content, optionally encrypted.
    """

    def __init__(self, encryption_key: Optional[str] = None):
        self.logger = logging.getLogger("kelpie-dns.registry.codec")
        self.fernet = self._create_fernet(encryption_key) if encryption_key else None

    def encode(self, labels: Dict[str, str], new_format: bool = True) -> str:
        content = format_labels(labels, new_format=new_format)
        if self.fernet:
            content = self._encrypt_txt_content(content)
        return f'"{content}"'

    def decode(self, content: str) -> Tuple[Dict[str, str], str]:
        """
        Decode ownership record content, decrypting it first when needed.

        Raises:
            InvalidHeritageError: If the content is not a readable ownership record
        """
        content = _strip_quotes(content)
        if content.startswith(ENCRYPTED_PREFIX):
            content = self._decrypt_txt_content(content)
        return parse_labels(content)

    def _encrypt_txt_content(self, content: str) -> str:
        encrypted = self.fernet.encrypt(content.encode())
        return f"{ENCRYPTED_PREFIX}{encrypted.decode()}"

    def _decrypt_txt_content(self, content: str) -> str:
        if not self.fernet:
            raise InvalidHeritageError(
                "encrypted ownership record found but no encryption key is configured"
            )
        try:
            return self.fernet.decrypt(content[len(ENCRYPTED_PREFIX) :].encode()).decode()
        except InvalidToken:
            raise InvalidHeritageError(
                "could not decrypt ownership record content"
            ) from None

    @staticmethod
    def _create_fernet(key: str) -> Fernet:
        # Fixed salt keeps the derived key stable across restarts
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(), length=32, salt=HERITAGE.encode(), iterations=100000
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))


class AffixNameMapper:
    """
    Maps a managed record name to the names of its ownership records.

    Either a prefix or a suffix may be configured, never both. A suffix is
    inserted after the first label of the name.
    """

    def __init__(self, prefix: str = "", suffix: str = "", wildcard_replacement: str = ""):
        if prefix and suffix:
            raise ConfigError("txt prefix and txt suffix are mutually exclusive")
        self.prefix = prefix.lower()
        self.suffix = suffix.lower()
        self.wildcard_replacement = wildcard_replacement

    def _replace_wildcard(self, name: str) -> str:
        if self.wildcard_replacement and name.startswith("*"):
            return self.wildcard_replacement + name[1:]
        return name

    def _split(self, name: str) -> Tuple[str, str]:
        first, _, rest = self._replace_wildcard(normalize_dnsname(name)).partition(".")
        return first, rest

    @staticmethod
    def _join(first: str, rest: str) -> str:
        return f"{first}.{rest}" if rest else first

    def to_legacy_txt_name(self, dnsname: str) -> str:
        """Ownership record name without the record type, as older versions wrote it."""
        first, rest = self._split(dnsname)
        if self.suffix:
            return self._join(first + self.suffix.replace(RECORD_TYPE_TEMPLATE, ""), rest)
        prefix = self.prefix.replace(RECORD_TYPE_TEMPLATE, "")
        return prefix + self._join(first, rest)

    def to_txt_name(self, dnsname: str, record_type: str) -> str:
        """Ownership record name embedding the record type."""
        record_type = record_type.lower()
        first, rest = self._split(dnsname)
        if self.suffix:
            if RECORD_TYPE_TEMPLATE in self.suffix:
                return self._join(first + self.suffix.replace(RECORD_TYPE_TEMPLATE, record_type), rest)
            return self._join(f"{record_type}-{first}{self.suffix}", rest)
        if RECORD_TYPE_TEMPLATE in self.prefix:
            return self.prefix.replace(RECORD_TYPE_TEMPLATE, record_type) + self._join(first, rest)
        return f"{self.prefix}{record_type}-" + self._join(first, rest)
