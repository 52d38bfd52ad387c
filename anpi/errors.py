"""Exception types shared by the core and the shell."""


class AnpiError(Exception):
    """Base class for application errors."""


class ConfigError(AnpiError):
    """Configuration or secret is missing or malformed."""


class DecodeError(AnpiError):
    """A telegram body could not be decoded into JSON."""


class CryptoError(AnpiError):
    """Base class for token encryption failures."""


class EncryptionKeyError(CryptoError, ConfigError):
    """The encryption key is absent or has the wrong length."""


class DecryptionError(CryptoError):
    """Ciphertext, IV or authentication tag failed verification."""
