"""
Password-based stream encryption for backup archives.

Produces and consumes the legacy salted format written by
``openssl enc -aes-256-cbc -md md5``:

    b"Salted__" + 8-byte salt + AES-256-CBC ciphertext (PKCS7 padded)

Key and IV are derived with OpenSSL's EVP_BytesToKey (MD5, one round), so
archives can be decrypted with the stock openssl tool and the same password:

    openssl enc -d -aes-256-cbc -md md5 -in backup.zip.crypt -out backup.zip
"""

import os
from typing import Callable, Iterable, Iterator, Optional, Tuple

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import CipherFormatError


MAGIC = b'Salted__'
SALT_SIZE = 8
HEADER_SIZE = len(MAGIC) + SALT_SIZE
KEY_SIZE = 32
IV_SIZE = 16
BLOCK_SIZE_BITS = 128
CHUNK_SIZE = 64 * 1024


def derive_key_and_iv(password: str, salt: bytes) -> Tuple[bytes, bytes]:
    """
    Derive an AES-256 key and CBC IV from a password and salt.

    Args:
        password: Encryption password
        salt: 8-byte salt from the stream header

    Returns:
        Tuple of (32-byte key, 16-byte IV)
    """
    if len(salt) != SALT_SIZE:
        raise ValueError(f"Salt must be {SALT_SIZE} bytes, got {len(salt)}")

    secret = password.encode('utf-8')
    material = b''
    block = b''

    while len(material) < KEY_SIZE + IV_SIZE:
        digest = hashes.Hash(hashes.MD5())
        digest.update(block + secret + salt)
        block = digest.finalize()
        material += block

    material = material[:KEY_SIZE + IV_SIZE]
    return material[:KEY_SIZE], material[KEY_SIZE:]


def _aes_cbc(password: str, salt: bytes) -> Cipher:
    key, iv = derive_key_and_iv(password, salt)
    return Cipher(algorithms.AES(key), modes.CBC(iv))


class StreamEncryptor:
    """
    Incremental encryptor emitting the salted header before the first
    ciphertext byte.
    """

    def __init__(self, password: str, salt: Optional[bytes] = None):
        if not password:
            raise ValueError("Encryption password must not be empty")

        self.salt = salt if salt is not None else os.urandom(SALT_SIZE)
        self._encryptor = _aes_cbc(password, self.salt).encryptor()
        self._padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        self._header_written = False
        self._finalized = False

    @property
    def header(self) -> bytes:
        return MAGIC + self.salt

    def _take_header(self) -> bytes:
        if self._header_written:
            return b''
        self._header_written = True
        return self.header

    def update(self, chunk: bytes) -> bytes:
        if self._finalized:
            raise RuntimeError("Encryptor already finalized")
        head = self._take_header()
        return head + self._encryptor.update(self._padder.update(chunk))

    def finalize(self) -> bytes:
        if self._finalized:
            raise RuntimeError("Encryptor already finalized")
        self._finalized = True
        head = self._take_header()
        tail = self._encryptor.update(self._padder.finalize())
        return head + tail + self._encryptor.finalize()


class StreamDecryptor:
    """
    Incremental decryptor for the salted format.

    Input is buffered until the 16-byte header is available; the key is
    derived from the salt found there.
    """

    def __init__(self, password: str):
        if not password:
            raise ValueError("Decryption password must not be empty")

        self._password = password
        self._pending = b''
        self._decryptor = None
        self._unpadder = None
        self._finalized = False
        self.salt = None

    def _read_header(self):
        if self._pending[:len(MAGIC)] != MAGIC:
            raise CipherFormatError("Invalid header: missing 'Salted__' magic")

        self.salt = self._pending[len(MAGIC):HEADER_SIZE]
        self._pending = self._pending[HEADER_SIZE:]
        self._decryptor = _aes_cbc(self._password, self.salt).decryptor()
        self._unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()

    def update(self, chunk: bytes) -> bytes:
        if self._finalized:
            raise RuntimeError("Decryptor already finalized")

        if self._decryptor is None:
            self._pending += chunk
            if len(self._pending) < HEADER_SIZE:
                return b''
            self._read_header()
            chunk, self._pending = self._pending, b''

        return self._unpadder.update(self._decryptor.update(chunk))

    def finalize(self) -> bytes:
        if self._finalized:
            raise RuntimeError("Decryptor already finalized")
        self._finalized = True

        if self._decryptor is None:
            raise CipherFormatError("Truncated input: no header found in encrypted data")

        try:
            tail = self._unpadder.update(self._decryptor.finalize())
            return tail + self._unpadder.finalize()
        except ValueError as e:
            # cryptography reports both a partial final block and bad padding as ValueError
            raise CipherFormatError(f"Invalid padding or truncated input: {e}")


def encrypt_stream(chunks: Iterable[bytes], password: str, salt: Optional[bytes] = None) -> Iterator[bytes]:
    """Encrypt an iterable of plaintext chunks, yielding ciphertext chunks."""
    encryptor = StreamEncryptor(password, salt)
    for chunk in chunks:
        out = encryptor.update(chunk)
        if out:
            yield out
    yield encryptor.finalize()


def decrypt_stream(chunks: Iterable[bytes], password: str) -> Iterator[bytes]:
    """Decrypt an iterable of ciphertext chunks, yielding plaintext chunks."""
    decryptor = StreamDecryptor(password)
    for chunk in chunks:
        out = decryptor.update(chunk)
        if out:
            yield out
    tail = decryptor.finalize()
    if tail:
        yield tail


def iter_file(path: str, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Read a file lazily in fixed-size chunks."""
    with open(path, 'rb') as f:
        while True:
            data = f.read(chunk_size)
            if not data:
                break
            yield data


def _write_chunks(chunks: Iterable[bytes], output_path: str,
                  progress_callback: Optional[Callable[[int], None]] = None) -> int:
    written = 0
    with open(output_path, 'wb') as out:
        for chunk in chunks:
            out.write(chunk)
            written += len(chunk)
            if progress_callback:
                progress_callback(written)
        out.flush()
        os.fsync(out.fileno())
    return written


def encrypt_file(input_path: str, output_path: str, password: str,
                 progress_callback: Optional[Callable[[int], None]] = None) -> int:
    """
    Encrypt a file into the salted format.

    Args:
        input_path: Plaintext file
        output_path: Destination for the encrypted file
        password: Encryption password
        progress_callback: Optional callable receiving bytes written so far

    Returns:
        Size of the encrypted file in bytes
    """
    return _write_chunks(encrypt_stream(iter_file(input_path), password), output_path, progress_callback)


def decrypt_file(input_path: str, output_path: str, password: str) -> int:
    """
    Decrypt a salted-format file.

    A partially written output is removed when decryption fails.

    Raises:
        CipherFormatError: If the header or padding is invalid
    """
    try:
        return _write_chunks(decrypt_stream(iter_file(input_path), password), output_path)
    except CipherFormatError:
        if os.path.exists(output_path):
            os.remove(output_path)
        raise
