"""Encrypted passphrase storage."""

from certwarden.vault.passphrases import PassphraseVault, load_or_create_master_secret

__all__ = ["PassphraseVault", "load_or_create_master_secret"]
