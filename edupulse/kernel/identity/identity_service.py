"""
Identity service: registration, sessions, password recovery, verification.

All collaborators are injected, so the service holds no global state:

- a UserRepository (storage, uniqueness, atomic token consumption)
- a JWTManager (session token signing/verification)
- a PasswordHasher (argon2id, run off the event loop)
- a DeliveryGateway (verification / reset emails)
- optionally a RefreshTokenStore; without one, refresh tokens are plain
  bearer credentials valid until expiry and logout is a no-op.
- optionally a DeliveryOutbox; emails queued there go out only once the
  caller has committed the account change that produced them.

Errors are raised from edupulse.kernel.errors and rendered by the API layer.
"""

import asyncio
import secrets
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from edupulse.config import Settings, get_settings
from edupulse.kernel.errors import (
    AuthenticationError,
    ConflictError,
    DeliveryError,
    EmailAlreadyExistsError,
    ExpiredOrInvalidTokenError,
    InvalidSessionTokenError,
    NotFoundError,
    ValidationError,
)
from edupulse.kernel.identity.jwt import IdentityClaims, JWTManager, TokenPair
from edupulse.kernel.identity.password import PasswordHasher
from edupulse.kernel.identity.repository import RefreshTokenStore, UserRepository
from edupulse.kernel.identity.secure_token import generate_secure_token, hash_secure_token
from edupulse.kernel.delivery.gateway import DeliveryGateway
from edupulse.kernel.models.base import generate_uuid, utcnow
from edupulse.kernel.models.user import (
    SESSION_ENDING_STATUSES,
    Gender,
    InvalidStatusTransition,
    User,
    UserRole,
    UserStatus,
    normalize_email,
    resolve_admin_transition,
)
from edupulse.logging_config import get_logger

logger = get_logger(__name__)

INVALID_LOGIN_MESSAGE = "Invalid credentials or account not active"

# role -> (required fields, optional fields)
ROLE_PROFILE_FIELDS: dict[UserRole, tuple[tuple[str, ...], tuple[str, ...]]] = {
    UserRole.STUDENT: (("roll_number", "grade_level", "section"), ("stream",)),
    UserRole.TEACHER: (("employee_id", "department"), ("subjects", "qualification")),
    UserRole.ADMIN: (("admin_code",), ("department",)),
    UserRole.PARENT: ((), ("occupation", "relationship", "child_student_id")),
}

# Never persisted in role_profile
_SECRET_PROFILE_FIELDS = frozenset({"admin_code"})

_background_deliveries: set[asyncio.Task] = set()


def _on_delivery_done(task: asyncio.Task) -> None:
    _background_deliveries.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Background email delivery crashed", exc_info=task.exception())


async def drain_background_deliveries(timeout: Optional[float] = None) -> None:
    """Wait for queued emails (used at shutdown and in tests)."""
    loop = asyncio.get_running_loop()
    pending = [task for task in _background_deliveries if task.get_loop() is loop]
    if pending:
        await asyncio.wait(pending, timeout=timeout)


def _spawn_delivery(job: Callable[[], Awaitable[None]]) -> None:
    task = asyncio.create_task(job())
    _background_deliveries.add(task)
    task.add_done_callback(_on_delivery_done)


class DeliveryOutbox:
    """
    Emails held back until the unit of work that produced them commits.

    The API binds one outbox to each database session: `release()` runs
    after a successful commit, `discard()` after a rollback.
    """

    def __init__(self):
        self._jobs: list[Callable[[], Awaitable[None]]] = []

    def __len__(self) -> int:
        return len(self._jobs)

    def add(self, job: Callable[[], Awaitable[None]]) -> None:
        self._jobs.append(job)

    def release(self) -> int:
        """Start every queued delivery in the background. Returns how many."""
        jobs, self._jobs = self._jobs, []
        for job in jobs:
            _spawn_delivery(job)
        return len(jobs)

    def discard(self) -> int:
        dropped = len(self._jobs)
        self._jobs = []
        if dropped:
            logger.info("Dropped queued emails after rollback", extra={"emails_dropped": dropped})
        return dropped


@dataclass
class AuthResult:
    """A user together with a freshly issued session."""

    user: User
    tokens: TokenPair


class IdentityService:
    """
    Service for user identity operations.

    Handles registration, authentication, token rotation, password reset
    and email verification.
    """

    def __init__(
        self,
        users: UserRepository,
        jwt_manager: JWTManager,
        password_hasher: PasswordHasher,
        delivery: DeliveryGateway,
        refresh_tokens: Optional[RefreshTokenStore] = None,
        settings: Optional[Settings] = None,
        background_delivery: bool = True,
        outbox: Optional[DeliveryOutbox] = None,
    ):
        self.users = users
        self.jwt_manager = jwt_manager
        self.password_hasher = password_hasher
        self.delivery = delivery
        self.refresh_tokens = refresh_tokens
        self.settings = settings or get_settings()
        self.background_delivery = background_delivery
        self.outbox = outbox

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: UserRole,
        phone: Optional[str] = None,
        date_of_birth: Optional[date] = None,
        gender: Optional[Gender] = None,
        role_profile: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> AuthResult:
        """
        Register a new account in PENDING_VERIFICATION and email a verification link.

        Args:
            email: Login email (stored normalised)
            password: Plain text password
            first_name: Given name
            last_name: Family name
            role: Account role
            phone: Optional phone number
            date_of_birth: Optional date of birth
            gender: Optional gender
            role_profile: Role-specific registration fields
            ip_address: Client IP for the log

        Returns:
            The created user and an access/refresh pair

        Raises:
            ValidationError: Missing role-specific fields or bad admin code
            ConflictError: Email already registered
        """
        email = normalize_email(email)
        profile = self._validate_role_profile(role, role_profile or {})

        if await self.users.get_by_email(email) is not None:
            raise ConflictError("Email already registered")

        password_hash = await self.password_hasher.hash_async(password)
        raw_token = generate_secure_token(self.settings.secure_token_bytes)
        now = utcnow()

        user = User(
            id=generate_uuid(),
            email=email,
            password_hash=password_hash,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            role=role,
            status=UserStatus.PENDING_VERIFICATION,
            email_verified=False,
            phone=phone,
            date_of_birth=date_of_birth,
            gender=gender,
            role_profile=profile,
            created_at=now,
            updated_at=now,
        )
        user.set_verification_token(
            hash_secure_token(raw_token),
            now + timedelta(hours=self.settings.email_verification_expire_hours),
        )

        try:
            user = await self.users.create(user)
        except EmailAlreadyExistsError:
            # Lost a race with a concurrent registration
            raise ConflictError("Email already registered")

        logger.info(
            "User registered",
            extra={"user_id": str(user.id), "role": role.value, "ip_address": ip_address},
        )

        await self._dispatch(
            self.delivery.send_verification_link,
            user.email,
            self._link("verify-email", raw_token),
            "verification",
        )

        tokens = await self._start_session(user)
        return AuthResult(user=user, tokens=tokens)

    def _validate_role_profile(self, role: UserRole, data: dict[str, Any]) -> dict[str, Any]:
        required, optional = ROLE_PROFILE_FIELDS[role]
        missing = [name for name in required if not data.get(name)]
        if missing:
            raise ValidationError(
                f"{role.value.title()} registration requires {', '.join(missing)}"
            )

        if role == UserRole.ADMIN:
            expected = self.settings.admin_registration_code
            provided = str(data["admin_code"])
            if not expected or not secrets.compare_digest(provided.encode(), expected.encode()):
                raise ValidationError("Invalid admin registration code")

        profile = {
            name: data[name]
            for name in (*required, *optional)
            if data.get(name) is not None and name not in _SECRET_PROFILE_FIELDS
        }
        if role == UserRole.ADMIN:
            profile.setdefault("department", "Administration")
        return profile

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
    ) -> AuthResult:
        """
        Authenticate with email and password.

        Unknown email, wrong password and a non-ACTIVE account all fail with
        the same AuthenticationError, after the same amount of hashing work.
        """
        user = await self.users.get_by_email(email)
        if user is None:
            await self.password_hasher.burn_async(password)
            logger.info("Login rejected", extra={"reason": "unknown_email", "ip_address": ip_address})
            raise AuthenticationError(INVALID_LOGIN_MESSAGE)

        password_ok = await self.password_hasher.verify_async(password, user.password_hash)
        if not password_ok or not user.can_authenticate:
            logger.info(
                "Login rejected",
                extra={
                    "user_id": str(user.id),
                    "reason": "bad_password" if not password_ok else f"status_{user.status.value.lower()}",
                    "ip_address": ip_address,
                },
            )
            raise AuthenticationError(INVALID_LOGIN_MESSAGE)

        now = utcnow()
        user.last_login_at = now
        user.updated_at = now
        if self.password_hasher.needs_rehash(user.password_hash):
            user.password_hash = await self.password_hasher.hash_async(password)
        await self.users.save(user)

        logger.info("User logged in", extra={"user_id": str(user.id), "ip_address": ip_address})
        tokens = await self._start_session(user)
        return AuthResult(user=user, tokens=tokens)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new access/refresh pair.

        With a revocation store the presented token is single-use: it is
        revoked atomically, and presenting an already-revoked token is
        treated as theft and ends every session of that user.

        Raises:
            InvalidSessionTokenError: Bad, expired, wrong-kind or reused token
            AuthenticationError: Account gone or not ACTIVE
        """
        payload = self.jwt_manager.verify_refresh_token(refresh_token)
        try:
            user_id = payload.user_id
        except ValueError:
            raise InvalidSessionTokenError()

        if self.refresh_tokens is not None:
            token_hash = JWTManager.hash_token(refresh_token)
            if not await self.refresh_tokens.revoke(token_hash, utcnow()):
                if await self.refresh_tokens.is_known(token_hash):
                    revoked = await self.refresh_tokens.revoke_all(user_id)
                    logger.warning(
                        "Refresh token reuse detected; all sessions revoked",
                        extra={"user_id": str(user_id), "sessions_revoked": revoked},
                    )
                raise InvalidSessionTokenError()

        user = await self.users.get_by_id(user_id)
        if user is None or not user.can_authenticate:
            raise AuthenticationError(INVALID_LOGIN_MESSAGE)

        claims = IdentityClaims(sub=payload.sub, email=payload.email, role=payload.role)
        return await self._issue_and_record(user_id, claims)

    async def logout(
        self,
        user_id: uuid.UUID,
        refresh_token: Optional[str] = None,
        all_devices: bool = False,
    ) -> None:
        """
        Best-effort session termination; always succeeds.

        Revokes the given refresh token (only if it belongs to user_id), or
        every refresh token of the user when all_devices is set.
        """
        revoked = 0
        if self.refresh_tokens is not None:
            if all_devices:
                revoked = await self.refresh_tokens.revoke_all(user_id)
            elif refresh_token:
                token_hash = JWTManager.hash_token(refresh_token)
                revoked = int(await self.refresh_tokens.revoke(token_hash, utcnow(), user_id=user_id))
        logger.info(
            "User logged out",
            extra={"user_id": str(user_id), "all_devices": all_devices, "sessions_revoked": revoked},
        )

    async def authenticate(self, user_id: uuid.UUID) -> User:
        """
        Resolve the account behind a verified access token.

        The token only proves who the caller was when it was issued; the
        account must still exist and be ACTIVE now.

        Raises:
            AuthenticationError: Account gone or not ACTIVE
        """
        user = await self.users.get_by_id(user_id)
        if user is None or not user.can_authenticate:
            logger.info(
                "Access token rejected",
                extra={
                    "user_id": str(user_id),
                    "reason": "unknown_user" if user is None else f"status_{user.status.value.lower()}",
                },
            )
            raise AuthenticationError("Account is not active")
        return user

    async def _start_session(self, user: User) -> TokenPair:
        claims = IdentityClaims(sub=str(user.id), email=user.email, role=user.role.value)
        return await self._issue_and_record(user.id, claims)

    async def _issue_and_record(self, user_id: uuid.UUID, claims: IdentityClaims) -> TokenPair:
        tokens = self.jwt_manager.issue_token_pair(claims)
        if self.refresh_tokens is not None:
            await self.refresh_tokens.record(
                user_id,
                JWTManager.hash_token(tokens.refresh_token),
                tokens.refresh_expires_at,
            )
        return tokens

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> None:
        """
        Start a password reset.

        Returns nothing and raises nothing for unknown accounts. Both paths
        generate a token and make a second storage round trip, and the email
        is sent in the background, so neither the response nor its latency
        reveals whether the email is registered.
        """
        user = await self.users.get_by_email(email)
        raw_token = generate_secure_token(self.settings.secure_token_bytes)
        token_hash = hash_secure_token(raw_token)
        if user is None:
            # Fresh random hash, never matches
            await self.users.find_by_reset_token(token_hash, utcnow())
            logger.info("Password reset requested for unknown account")
            return

        now = utcnow()
        user.set_reset_token(
            token_hash,
            now + timedelta(minutes=self.settings.password_reset_expire_minutes),
        )
        user.updated_at = now
        await self.users.save(user)
        logger.info("Password reset requested", extra={"user_id": str(user.id)})

        await self._dispatch(
            self.delivery.send_password_reset_link,
            user.email,
            self._link("reset-password", raw_token),
            "password reset",
        )

    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Complete a password reset with the emailed token.

        Wrong, expired and already-used tokens are indistinguishable.

        Raises:
            ExpiredOrInvalidTokenError: Token not accepted
        """
        token_hash = hash_secure_token(token)
        user = await self.users.find_by_reset_token(token_hash, utcnow())
        if user is None:
            raise ExpiredOrInvalidTokenError()

        password_hash = await self.password_hasher.hash_async(new_password)
        consumed = await self.users.consume_reset_token(user.id, token_hash, password_hash, utcnow())
        if not consumed:
            raise ExpiredOrInvalidTokenError()

        revoked = await self._revoke_all_sessions(user.id)
        logger.info(
            "Password reset completed",
            extra={"user_id": str(user.id), "sessions_revoked": revoked},
        )

    async def change_password(
        self,
        user_id: uuid.UUID,
        current_password: str,
        new_password: str,
    ) -> None:
        """
        Change password for a signed-in user; ends all their sessions.

        Raises:
            NotFoundError: User no longer exists
            AuthenticationError: Current password is wrong
        """
        user = await self.get_current_user(user_id)
        if not await self.password_hasher.verify_async(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")

        user.password_hash = await self.password_hasher.hash_async(new_password)
        user.clear_reset_token()
        user.updated_at = utcnow()
        await self.users.save(user)

        revoked = await self._revoke_all_sessions(user.id)
        logger.info("Password changed", extra={"user_id": str(user.id), "sessions_revoked": revoked})

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def verify_email(self, token: str) -> None:
        """
        Activate a pending account with the emailed token.

        Raises:
            ExpiredOrInvalidTokenError: Token not accepted
        """
        token_hash = hash_secure_token(token)
        user = await self.users.find_by_verification_token(token_hash, utcnow())
        if user is None:
            raise ExpiredOrInvalidTokenError()
        if not await self.users.consume_verification_token(user.id, token_hash, utcnow()):
            raise ExpiredOrInvalidTokenError()
        logger.info("Email verified", extra={"user_id": str(user.id)})

    # ------------------------------------------------------------------
    # Profile and administration
    # ------------------------------------------------------------------

    async def get_current_user(self, user_id: uuid.UUID) -> User:
        """Get a user by ID or raise NotFoundError."""
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def update_profile(
        self,
        user_id: uuid.UUID,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        """Update the editable profile fields."""
        user = await self.get_current_user(user_id)
        if first_name is not None:
            user.first_name = first_name.strip()
        if last_name is not None:
            user.last_name = last_name.strip()
        if phone is not None:
            user.phone = phone
        user.updated_at = utcnow()
        return await self.users.save(user)

    async def change_status(self, user_id: uuid.UUID, status: UserStatus) -> User:
        """
        Administrative status change.

        Raises:
            NotFoundError: Unknown user
            ValidationError: Transition not allowed
        """
        user = await self.get_current_user(user_id)
        previous = user.status
        try:
            user.status = resolve_admin_transition(user, status)
        except InvalidStatusTransition as exc:
            raise ValidationError(str(exc))
        user.updated_at = utcnow()
        user = await self.users.save(user)

        revoked = 0
        if user.status in SESSION_ENDING_STATUSES:
            revoked = await self._revoke_all_sessions(user.id)
        logger.info(
            "User status changed",
            extra={
                "user_id": str(user.id),
                "previous_status": previous.value,
                "new_status": user.status.value,
                "sessions_revoked": revoked,
            },
        )
        return user

    async def delete_user(self, user_id: uuid.UUID) -> None:
        """Delete an account and end its sessions."""
        if not await self.users.delete(user_id):
            raise NotFoundError("User not found")
        await self._revoke_all_sessions(user_id)
        logger.info("User deleted", extra={"user_id": str(user_id)})

    async def _revoke_all_sessions(self, user_id: uuid.UUID) -> int:
        if self.refresh_tokens is None:
            return 0
        return await self.refresh_tokens.revoke_all(user_id)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _link(self, path: str, raw_token: str) -> str:
        return f"{self.settings.frontend_url.rstrip('/')}/{path}?token={raw_token}"

    async def _dispatch(
        self,
        send: Callable[[str, str], Awaitable[None]],
        email: str,
        link: str,
        kind: str,
    ) -> None:
        job = partial(self._deliver, send, email, link, kind)
        if self.outbox is not None:
            self.outbox.add(job)
        elif self.background_delivery:
            _spawn_delivery(job)
        else:
            await job()

    async def _deliver(
        self,
        send: Callable[[str, str], Awaitable[None]],
        email: str,
        link: str,
        kind: str,
    ) -> None:
        # Delivery failures never undo the account change that triggered them
        try:
            await asyncio.wait_for(send(email, link), timeout=self.settings.delivery_timeout_seconds)
        except (DeliveryError, asyncio.TimeoutError) as exc:
            logger.error(
                "Failed to send %s email",
                kind,
                extra={"recipient": email, "error": f"{type(exc).__name__}: {exc}"},
            )
        except Exception:
            logger.exception("Unexpected error sending %s email", kind, extra={"recipient": email})
