"""accvault - Zero-Trust secrets manager core.

Field values are encrypted on the client with a key derived from the
user's master passphrase; the server stores ciphertext, PBKDF2 password
hashes and token digests only.
"""

__version__ = "0.1.0"
__author__ = "accvault contributors"
