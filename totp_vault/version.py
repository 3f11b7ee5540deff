"""TOTP Vault Meta information.
   TOTP Vault stores encrypted TOTP seeds and reveals live codes
   according to per-user and per-group visibility.
"""
__title__ = 'totp_vault'
__description__ = (
   'TOTP Vault stores encrypted TOTP seeds and passwords '
   'and reveals live codes by user and group permissions.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
