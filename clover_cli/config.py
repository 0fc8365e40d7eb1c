"""
Configuration management for Clover CLI.
Handles per-merchant credentials stored in ~/.config/clover-cli/config.json
"""
import json
import logging
import os
import sys
import tempfile
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from .errors import ConfigError

logger = logging.getLogger(__name__)

MERCHANT_ENV = 'CLOVER_MERCHANT_ID'
ACCESS_TOKEN_ENV = 'CLOVER_ACCESS_TOKEN'
REGION_ENV = 'CLOVER_REGION'

# Record fields encrypted at rest
SECRET_FIELDS = ('client_secret', 'access_token', 'refresh_token')


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    if sys.platform == 'win32' and os.environ.get('APPDATA'):
        config_dir = Path(os.environ['APPDATA']) / 'clover-cli'
    elif os.environ.get('XDG_CONFIG_HOME'):
        config_dir = Path(os.environ['XDG_CONFIG_HOME']) / 'clover-cli'
    else:
        config_dir = Path.home() / '.config' / 'clover-cli'

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    """Get the configuration file path."""
    return get_config_dir() / 'config.json'


@dataclass
class CredentialRecord:
    """OAuth credentials for one merchant. ``expires_at`` is epoch milliseconds."""

    client_id: str
    client_secret: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    region: str = 'us'

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CredentialRecord':
        """
        Build a record from its stored form.

        Raises:
            ConfigError: If a field is missing or has the wrong type
        """
        if not data.get('access_token'):
            raise ConfigError("credential record has no access_token")
        for name in ('client_id', 'client_secret', 'access_token', 'refresh_token', 'region'):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise ConfigError(f"credential field {name} is not a string")
        expires_at = data.get('expires_at')
        if expires_at is not None and (isinstance(expires_at, bool) or not isinstance(expires_at, (int, float))):
            raise ConfigError("credential field expires_at is not a number")
        return cls(
            client_id=data.get('client_id', ''),
            client_secret=data.get('client_secret', ''),
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            expires_at=int(expires_at) if expires_at is not None else None,
            region=data.get('region') or 'us',
        )


@dataclass
class StoreData:
    """In-memory image of config.json."""

    default_merchant: Optional[str] = None
    region: Optional[str] = None
    credentials: Dict[str, CredentialRecord] = field(default_factory=dict)


class CredentialStore:
    """
    Durable per-merchant credential records with one default merchant.

    The file is read once on first access, mutated in memory, and rewritten
    in full after every mutation.

    Example:
        store = CredentialStore()
        store.put('MERCHANT1', CredentialRecord('app', 'secret', 'token'))
        record = store.get()   # resolves the default merchant
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_config_path()
        self._data: Optional[StoreData] = None

    @property
    def key_path(self) -> Path:
        return self.path.parent / '.key'

    @property
    def data(self) -> StoreData:
        if self._data is None:
            self._data = self.load()
        return self._data

    # Encryption

    def _fernet(self, replace_invalid: bool = False) -> Fernet:
        """
        Get or create the Fernet key used for secret fields.

        Args:
            replace_invalid: Generate a new key instead of raising when the
                existing key file is unreadable

        Raises:
            ConfigError: If the key file is unreadable and replace_invalid is False
        """
        key_path = self.key_path
        if key_path.exists():
            try:
                return Fernet(key_path.read_bytes())
            except (ValueError, TypeError, OSError) as e:
                if not replace_invalid:
                    raise ConfigError(f"Invalid encryption key in {key_path}: {e}")
                logger.warning("Replacing invalid encryption key %s", key_path)
                key_path.unlink()

        key = Fernet.generate_key()
        key_path.parent.mkdir(parents=True, exist_ok=True)
        # Readable only by owner
        key_path.touch(mode=0o600)
        key_path.write_bytes(key)
        return Fernet(key)

    def _encode_record(self, record: CredentialRecord, fernet: Fernet) -> Dict[str, Any]:
        raw = record.to_dict()
        for name in SECRET_FIELDS:
            if raw.get(name):
                raw[name] = fernet.encrypt(raw[name].encode('utf-8')).decode('ascii')
        return raw

    def _decode_record(self, raw: Dict[str, Any], fernet: Fernet) -> CredentialRecord:
        if not isinstance(raw, dict):
            raise ConfigError("credential record is not an object")
        plain = dict(raw)
        for name in SECRET_FIELDS:
            if not plain.get(name):
                continue
            if not isinstance(plain[name], str):
                raise ConfigError(f"{name} is not a string")
            try:
                plain[name] = fernet.decrypt(plain[name].encode('ascii')).decode('utf-8')
            except (InvalidToken, ValueError) as e:
                raise ConfigError(f"cannot decrypt {name}: {e!r}")
        return CredentialRecord.from_dict(plain)

    # Persistence

    def _read(self) -> StoreData:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            raise ConfigError(f"Failed to load config from {self.path}: {e}")

        if not isinstance(raw, dict) or not isinstance(raw.get('credentials', {}), dict):
            raise ConfigError(f"Unexpected config layout in {self.path}")

        for name in ('default_merchant', 'region'):
            if raw.get(name) is not None and not isinstance(raw[name], str):
                raise ConfigError(f"Unexpected {name} in {self.path}")

        fernet = self._fernet()
        credentials = {}
        for merchant_id, record in raw.get('credentials', {}).items():
            try:
                credentials[merchant_id] = self._decode_record(record, fernet)
            except (ValueError, TypeError, AttributeError, OverflowError) as e:
                raise ConfigError(f"Malformed credentials for {merchant_id}: {e}")
        return StoreData(
            default_merchant=raw.get('default_merchant'),
            region=raw.get('region'),
            credentials=credentials,
        )

    def load(self) -> StoreData:
        """
        Load the store from disk.

        Returns:
            Store contents; empty when the file is missing or unreadable.
        """
        if not self.path.exists():
            self._data = StoreData()
            return self._data

        try:
            self._data = self._read()
        except ConfigError as e:
            logger.warning("Ignoring unreadable credential store: %s", e)
            self._data = StoreData()
        return self._data

    def save(self, data: Optional[StoreData] = None) -> None:
        """
        Write the whole store atomically.

        Args:
            data: Store contents to write. Defaults to the loaded store.
        """
        if data is not None:
            self._data = data
        data = self.data

        fernet = self._fernet(replace_invalid=True)
        document: Dict[str, Any] = {
            'credentials': {
                merchant_id: self._encode_record(record, fernet)
                for merchant_id, record in data.credentials.items()
            }
        }
        if data.default_merchant:
            document['default_merchant'] = data.default_merchant
        if data.region:
            document['region'] = data.region

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix='.config-', suffix='.tmp', dir=self.path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    # Records

    def resolve_merchant_id(self, merchant_id: Optional[str] = None) -> Optional[str]:
        """Explicit id, then $CLOVER_MERCHANT_ID, then the stored default."""
        return merchant_id or os.environ.get(MERCHANT_ENV) or self.data.default_merchant

    def get(self, merchant_id: Optional[str] = None) -> Optional[CredentialRecord]:
        """
        Get credentials for a merchant.

        Args:
            merchant_id: Merchant ID. Falls back to the env override, then the default.

        Returns:
            A copy of the record, or None if nothing is stored for the resolved id
        """
        resolved = self.resolve_merchant_id(merchant_id)
        if not resolved:
            return None
        record = self.data.credentials.get(resolved)
        return replace(record) if record else None

    def put(self, merchant_id: str, record: CredentialRecord) -> None:
        """Insert or replace a record. The first merchant stored becomes the default."""
        data = self.data
        data.credentials[merchant_id] = replace(record)
        if not data.default_merchant:
            data.default_merchant = merchant_id
        self.save()

    def update_tokens(
        self,
        merchant_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[int] = None,
    ) -> CredentialRecord:
        """
        Replace the token fields of an existing record, keeping the rest.

        Raises:
            KeyError: If no record exists for merchant_id
        """
        record = self.data.credentials[merchant_id]
        record.access_token = access_token
        if refresh_token:
            record.refresh_token = refresh_token
        if expires_at is not None:
            record.expires_at = expires_at
        self.save()
        return replace(record)

    def remove(self, merchant_id: str) -> bool:
        """
        Delete a record. If it was the default, another merchant takes its place.

        Returns:
            True if a record was removed
        """
        data = self.data
        if merchant_id not in data.credentials:
            return False

        del data.credentials[merchant_id]
        if data.default_merchant == merchant_id:
            data.default_merchant = next(iter(data.credentials), None)
        self.save()
        return True

    def set_default(self, merchant_id: str) -> None:
        """Point the default at merchant_id. Existence is not checked here."""
        self.data.default_merchant = merchant_id
        self.save()

    def set_region(self, region: str) -> None:
        self.data.region = region
        self.save()

    def list(self) -> List[str]:
        """All known merchant IDs."""
        return list(self.data.credentials)

    @property
    def default_merchant(self) -> Optional[str]:
        return self.data.default_merchant

    @property
    def region(self) -> Optional[str]:
        return self.data.region
