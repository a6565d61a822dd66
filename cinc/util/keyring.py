"""Credential storage in the system keychain"""

# Third Party Libraries
import keyring
from keyring.errors import KeyringError, PasswordDeleteError, PasswordSetError

from cinc.settings import KEYRING_SERVICE
from cinc.util.log import logger


def store_credentials(credential_id, secret):
    try:
        keyring.set_password(KEYRING_SERVICE, credential_id, secret)
        return True
    except PasswordSetError:
        return False


def get_credentials(credential_id):
    """Return the secret stored under credential_id, or None"""
    if not credential_id:
        return None
    try:
        return keyring.get_password(KEYRING_SERVICE, credential_id)
    except KeyringError as ex:
        logger.error("Unable to read credential '%s' from the keyring: %s", credential_id, ex)
        return None


def delete_credentials(credential_id):
    try:
        keyring.delete_password(KEYRING_SERVICE, credential_id)
        return True
    except PasswordDeleteError:
        return False
