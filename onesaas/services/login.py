"""End-to-end login decision.

States::

    AWAITING_CREDENTIALS -> CREDENTIALS_VALID -> AUTHENTICATED
                                              -> TWO_FACTOR_REQUIRED
                                              -> REJECTED

Credentials are always checked before anything about 2FA is revealed, and a
trusted device only ever skips the code challenge, never the credential or
email-verification steps.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from onesaas.exceptions import (
    CryptoError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTwoFactorCodeError,
    OneSaaSError,
    StoreUnavailableError,
)
from onesaas.models.account import Account
from onesaas.services import backup_codes, totp
from onesaas.services.passwords import burn_verification_time, verify_password
from onesaas.services.tokens import TokenClaims, TokenIssuer, TokenPair
from onesaas.services.trusted_devices import DeviceTrustLedger
from onesaas.utils.encryption import SecretCodec
from onesaas.utils.security import mask_email

logger = logging.getLogger(__name__)

# Compare-and-swap attempts when consuming a backup code
MAX_CONSUME_ATTEMPTS = 3


class LoginState(str, Enum):
    AWAITING_CREDENTIALS = "awaiting_credentials"
    CREDENTIALS_VALID = "credentials_valid"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


@dataclass
class LoginResult:
    state: LoginState
    account: Optional[Account] = None
    tokens: Optional[TokenPair] = None
    device_token: Optional[str] = None
    device_expires_at: Optional[datetime] = None
    used_backup_code: bool = False
    backup_codes_remaining: Optional[int] = None
    backup_codes_low: bool = False

    @property
    def requires_two_factor(self) -> bool:
        return self.state is LoginState.TWO_FACTOR_REQUIRED


class LoginStateMachine:
    """Drives a single login attempt through its states.

    One instance per attempt; ``state`` reflects how far the attempt got.
    """

    def __init__(self, db: AsyncSession, codec: SecretCodec, tokens: TokenIssuer,
                 devices: Optional[DeviceTrustLedger] = None):
        self.db = db
        self.codec = codec
        self.tokens = tokens
        self.devices = devices or DeviceTrustLedger()
        self.state = LoginState.AWAITING_CREDENTIALS

    async def login(
        self,
        email: str,
        password: str,
        two_factor_code: Optional[str] = None,
        device_token: Optional[str] = None,
        remember_device: bool = False,
        now: Optional[datetime] = None,
    ) -> LoginResult:
        now = now or datetime.now(UTC)
        try:
            return await self._run(email, password, two_factor_code, device_token, remember_device, now)
        except OneSaaSError as e:
            self._transition(LoginState.REJECTED)
            logger.info("Login rejected for %s: %s", mask_email(email), e.code)
            raise

    async def _run(self, email, password, two_factor_code, device_token, remember_device, now) -> LoginResult:
        # 1. Credentials
        account = await self._find_account(email)
        if account is None:
            burn_verification_time(password)
            raise InvalidCredentialsError()
        if not verify_password(password, account.password_hash):
            raise InvalidCredentialsError()
        self._transition(LoginState.CREDENTIALS_VALID)

        # 2. Verified email
        if not account.is_email_verified:
            raise EmailNotVerifiedError()

        # 3. No 2FA
        if not account.two_factor_enabled:
            return await self._authenticate(account, now)

        # 4. Trusted device skips the challenge
        if device_token and await self.devices.is_trusted(self.db, account.id, device_token, now):
            logger.debug("Trusted device accepted for account %s", account.id)
            return await self._authenticate(account, now)

        # 5. Challenge
        if not two_factor_code:
            self._transition(LoginState.TWO_FACTOR_REQUIRED)
            return LoginResult(state=self.state, account=account)

        # 6. TOTP, then backup code
        result = LoginResult(state=self.state, account=account)
        if not self._verify_totp(account, two_factor_code):
            remaining = await self.consume_backup_code(account, two_factor_code)
            if remaining is None:
                raise InvalidTwoFactorCodeError()
            result.used_backup_code = True
            result.backup_codes_remaining = remaining
            result.backup_codes_low = backup_codes.is_running_low(account.backup_codes)
            logger.info("Backup code used for account %s (%d remaining)", account.id, remaining)

        # 7. Optional device trust
        if remember_device:
            remembered = await self.devices.remember(self.db, account.id, now)
            result.device_token = remembered.device_token
            result.device_expires_at = remembered.expires_at

        authenticated = await self._authenticate(account, now)
        authenticated.used_backup_code = result.used_backup_code
        authenticated.backup_codes_remaining = result.backup_codes_remaining
        authenticated.backup_codes_low = result.backup_codes_low
        authenticated.device_token = result.device_token
        authenticated.device_expires_at = result.device_expires_at
        return authenticated

    async def _find_account(self, email: str) -> Optional[Account]:
        if not email:
            return None
        result = await self.db.execute(
            select(Account).where(func.lower(Account.email) == email.strip().lower())
        )
        return result.scalars().first()

    def _verify_totp(self, account: Account, code: str) -> bool:
        if not account.two_factor_secret:
            return False
        try:
            secret = self.codec.decrypt(account.two_factor_secret)
        except CryptoError:
            # Backup codes remain usable when the stored secret cannot be read
            logger.error("Stored 2FA secret for account %s could not be decrypted", account.id)
            return False
        return totp.verify_token(code, secret)

    async def consume_backup_code(self, account: Account, candidate: str) -> Optional[int]:
        """Atomically remove a matching backup code.

        The stored set is replaced with a copy lacking the used code, guarded by
        ``security_version`` so two consumers of the same code cannot both win.
        Returns the number of codes left, or None when nothing matched.
        """
        for _ in range(MAX_CONSUME_ATTEMPTS):
            index = backup_codes.find(candidate, account.backup_codes)
            if index is None:
                return None

            remaining = backup_codes.remove(account.backup_codes, index)
            seen = account.security_version
            result = await self.db.execute(
                update(Account)
                .where(Account.id == account.id, Account.security_version == seen)
                .values(backup_codes=remaining, security_version=seen + 1)
            )
            if result.rowcount == 1:
                await self.db.commit()
                await self.db.refresh(account)
                return len(remaining)

            # Someone else changed the set first; re-read and try again
            await self.db.rollback()
            await self.db.refresh(account)

        logger.warning("Backup code consumption for account %s kept conflicting", account.id)
        raise StoreUnavailableError("Could not update backup codes. Please retry.")

    async def _authenticate(self, account: Account, now: datetime) -> LoginResult:
        account.last_login_at = now
        await self.db.commit()
        await self.db.refresh(account)

        tokens = self.tokens.issue_pair(
            TokenClaims(user_id=account.id, email=account.email, role=account.role)
        )
        self._transition(LoginState.AUTHENTICATED)
        logger.info("Login succeeded for account %s", account.id)
        return LoginResult(state=self.state, account=account, tokens=tokens)

    def _transition(self, state: LoginState) -> None:
        logger.debug("Login state %s -> %s", self.state.value, state.value)
        self.state = state
