"""Dual-channel comment protocol.

Comments reach ``CONFIRMED`` through one of two channels:

* ETHEREUM: the commenter signs a ``CommentSignature`` statement; the
  signature is verified inline during submission, and a failed check means
  no row is ever written.
* EMAIL: the comment is stored ``PENDING`` and a ``confirm`` token is mailed
  to the commenter; following the link performs the transition.

Both channels end in :meth:`CommentService._confirm`, the only writer of
``status = CONFIRMED`` and ``credential``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from epress_node.core.settings import settings
from epress_node.db.time import from_unix, utcnow, within_window
from epress_node.errors import (
    ConflictError,
    FeatureDisabledError,
    ForbiddenError,
    NotFoundError,
    SignatureMismatchError,
    TokenInvalidError,
    ValidationFailedError,
)
from epress_node.models import (
    AUTH_TYPE_EMAIL,
    AUTH_TYPE_ETHEREUM,
    COMMENT_STATUS_CONFIRMED,
    COMMENT_STATUS_EXPIRED,
    COMMENT_STATUS_PENDING,
    COMMENT_STATUS_REJECTED,
    Comment,
    Node,
    Publication,
)
from epress_node.schemas.comment import EmailAuth, EthereumAuth, EthereumDeletionAuth
from epress_node.services import signatures, statements, tokens
from epress_node.services.mailer import Mailer, get_mailer
from epress_node.services.node_settings import ALLOW_COMMENT, get_flag, get_self_node
from epress_node.utils.hash import body_hash

logger = logging.getLogger(__name__)

MAX_AUTHOR_NAME_LENGTH = 50

DELETION_DELETED = "deleted"
DELETION_CONFIRMATION_SENT = "confirmation_sent"


def _same_email(left: str, right: str) -> bool:
    return left.strip().lower() == right.strip().lower()


class CommentService:
    """Submit, confirm, moderate and delete comments."""

    def __init__(self, db: Session, mailer: Mailer | None = None) -> None:
        self.db = db
        self.mailer = mailer or get_mailer()

    # --- helpers -------------------------------------------------------------------

    def _self_node(self) -> Node:
        node = get_self_node(self.db)
        if node is None:
            raise NotFoundError("Node is not installed")
        return node

    def _publication(self, publication_id: int) -> Publication:
        publication = self.db.get(Publication, publication_id)
        if publication is None:
            raise NotFoundError("Publication not found")
        return publication

    def get(self, comment_id: int) -> Comment:
        comment = self.db.get(Comment, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        return comment

    def _verification_link(self, token: str) -> str:
        return f"{self._self_node().url.rstrip('/')}/api/v1/verify?token={token}"

    def _send(self, recipient: str, subject: str, body: str, link: str) -> None:
        try:
            self.mailer.send(recipient, subject, body, link=link)
        except Exception as exc:
            logger.error("Failed to send mail to %s: %s", recipient, exc)

    def _confirm(self, comment: Comment, credential: str | None = None) -> bool:
        """Move a PENDING comment to CONFIRMED.

        Returns True if this call performed the transition. Uses a conditional
        update so concurrent confirmations of one comment apply exactly once.
        Does not commit.
        """
        values: dict[object, object] = {
            Comment.status: COMMENT_STATUS_CONFIRMED,
            Comment.updated_at: utcnow(),
        }
        if credential is not None:
            values[Comment.credential] = credential
        updated = (
            self.db.query(Comment)
            .filter(Comment.id == comment.id, Comment.status == COMMENT_STATUS_PENDING)
            .update(values, synchronize_session=False)
        )
        if updated:
            self.db.query(Publication).filter(Publication.id == comment.publication_id).update(
                {Publication.comment_count: Publication.comment_count + 1},
                synchronize_session="fetch",
            )
        return bool(updated)

    def _remove(self, comment: Comment) -> None:
        """Delete a comment and keep the publication's count in step. Does not commit."""
        if comment.status == COMMENT_STATUS_CONFIRMED:
            self.db.query(Publication).filter(Publication.id == comment.publication_id).update(
                {Publication.comment_count: Publication.comment_count - 1},
                synchronize_session="fetch",
            )
        self.db.delete(comment)

    # --- submission ----------------------------------------------------------------

    def submit(
        self,
        publication_id: int,
        body: str,
        author_name: str,
        auth: EthereumAuth | EmailAuth,
        *,
        now: int | None = None,
    ) -> Comment:
        """Submit a comment through either channel.

        Args:
            publication_id: Publication being commented on.
            body: Comment text; its sha256 is what ETHEREUM commenters sign.
            author_name: Display name, at most 50 characters.
            auth: Channel credentials.
            now: Current unix time override.

        Returns:
            The stored comment: CONFIRMED for ETHEREUM, PENDING for EMAIL.

        Raises:
            FeatureDisabledError: If the owner switched comments off.
            ValidationFailedError: On empty body, bad name or stale timestamp.
            NotFoundError: If the publication does not exist.
            SignatureMismatchError: If the wallet signature does not verify.
        """
        logger.debug("Comment submission on publication %s via %s", publication_id, auth.type)
        if not get_flag(self.db, ALLOW_COMMENT):
            raise FeatureDisabledError("Comments are disabled", code="COMMENT_DISABLED")
        if not body or not body.strip():
            raise ValidationFailedError("Comment body must not be empty")
        author_name = (author_name or "").strip()
        if not author_name or len(author_name) > MAX_AUTHOR_NAME_LENGTH:
            raise ValidationFailedError(
                f"Author name must be between 1 and {MAX_AUTHOR_NAME_LENGTH} characters"
            )
        publication = self._publication(publication_id)

        match auth:
            case EthereumAuth():
                return self._submit_signed(publication, body, author_name, auth, now)
            case EmailAuth():
                return self._submit_email(publication, body, author_name, auth)
            case _:
                raise ValidationFailedError("Unsupported authentication type")

    def _submit_signed(
        self,
        publication: Publication,
        body: str,
        author_name: str,
        auth: EthereumAuth,
        now: int | None,
    ) -> Comment:
        commenter = statements.normalize_address(auth.address, "address")
        if not within_window(auth.timestamp, settings.comment_signature_validity_seconds, now):
            raise ValidationFailedError("Comment signature timestamp is outside the valid window")

        node = self._self_node()
        statement = statements.comment_signature(
            node.address, commenter, publication.id, body_hash(body), auth.timestamp
        )
        context = signatures.CommentContext(
            node_address=node.address,
            publication_id=publication.id,
            commenter_address=commenter,
            body=body,
        )
        if not signatures.verify_comment_signature(context, statement, auth.signature):
            logger.warning("Rejected comment signature from %s", commenter)
            raise SignatureMismatchError("Invalid signature")

        comment = Comment(
            publication_id=publication.id,
            body=body,
            status=COMMENT_STATUS_PENDING,
            auth_type=AUTH_TYPE_ETHEREUM,
            author_name=author_name,
            author_id=commenter,
            created_at=from_unix(auth.timestamp),
        )
        self.db.add(comment)
        self.db.flush()
        self._confirm(comment, credential=auth.signature)
        self.db.commit()
        self.db.refresh(comment)
        logger.info("Comment %s confirmed by signature from %s", comment.id, commenter)
        return comment

    def _submit_email(
        self,
        publication: Publication,
        body: str,
        author_name: str,
        auth: EmailAuth,
    ) -> Comment:
        comment = Comment(
            publication_id=publication.id,
            body=body,
            status=COMMENT_STATUS_PENDING,
            auth_type=AUTH_TYPE_EMAIL,
            author_name=author_name,
            author_id=auth.email,
            credential=None,
        )
        self.db.add(comment)
        self.db.commit()
        self.db.refresh(comment)
        logger.info("Comment %s pending email confirmation", comment.id)

        token = tokens.issue(tokens.ACTION_CONFIRM, comment.id, auth.email)
        link = self._verification_link(token)
        self._send(
            auth.email,
            "Confirm your comment",
            f"Follow this link to publish your comment:\n{link}",
            link,
        )
        return comment

    # --- token paths ---------------------------------------------------------------

    def _claims_for(self, token: str, action: str) -> tuple[tokens.ConfirmationClaims, Comment]:
        claims = tokens.validate(token)
        if claims.action != action:
            raise TokenInvalidError("Token action does not match")
        comment = self.db.get(Comment, claims.comment_id)
        if comment is None:
            raise TokenInvalidError("Token refers to an unknown comment")
        if comment.auth_type != AUTH_TYPE_EMAIL or not _same_email(comment.author_id, claims.email):
            raise TokenInvalidError("Token subject does not match the comment")
        return claims, comment

    def confirm_with_token(self, token: str) -> Comment:
        """Confirm an EMAIL comment from its mailed token.

        Confirming an already CONFIRMED comment is a successful no-op.

        Raises:
            TokenRejectedError: If the token is expired, forged, for another
                action, or the comment is no longer PENDING or CONFIRMED.
        """
        _, comment = self._claims_for(token, tokens.ACTION_CONFIRM)
        if comment.status == COMMENT_STATUS_CONFIRMED:
            logger.debug("Comment %s already confirmed", comment.id)
            return comment
        if comment.status != COMMENT_STATUS_PENDING:
            raise TokenInvalidError(f"Comment is {comment.status}")
        if self._confirm(comment):
            logger.info("Comment %s confirmed by email", comment.id)
        self.db.commit()
        self.db.refresh(comment)
        return comment

    def destroy_with_token(self, token: str) -> int:
        """Delete an EMAIL comment from its mailed ``destroy`` token. Returns its id.

        The comment may be in any status; a PENDING one is removed without
        touching the publication's comment count.
        """
        _, comment = self._claims_for(token, tokens.ACTION_DESTROY)
        comment_id = comment.id
        self._remove(comment)
        self.db.commit()
        logger.info("Comment %s deleted by email token", comment_id)
        return comment_id

    # --- deletion ------------------------------------------------------------------

    def deletion_statement(self, comment_id: int) -> statements.TypedStatement:
        """Return the DeleteComment statement an ETHEREUM commenter must sign."""
        comment = self.get(comment_id)
        if comment.auth_type != AUTH_TYPE_ETHEREUM:
            raise ValidationFailedError("Comment was not signed with a wallet")
        return statements.delete_comment(self._self_node().address, comment.id, comment.author_id)

    def request_deletion(
        self, comment_id: int, auth: EthereumDeletionAuth | EmailAuth
    ) -> str:
        """Handle a commenter's request to retract a comment.

        Returns:
            ``deleted`` when a wallet signature removed the comment, or
            ``confirmation_sent`` when a destroy link was mailed.
        """
        comment = self.get(comment_id)
        match auth:
            case EthereumDeletionAuth():
                statement = self.deletion_statement(comment_id)
                if not signatures.verify(statement, auth.signature, comment.author_id):
                    logger.warning("Rejected deletion signature for comment %s", comment_id)
                    raise SignatureMismatchError("Invalid signature")
                self._remove(comment)
                self.db.commit()
                logger.info("Comment %s deleted by signature", comment_id)
                return DELETION_DELETED
            case EmailAuth():
                if comment.auth_type != AUTH_TYPE_EMAIL:
                    raise ValidationFailedError("Comment was not submitted by email")
                if not _same_email(comment.author_id, auth.email):
                    raise ForbiddenError("Email does not match the comment author")
                token = tokens.issue(tokens.ACTION_DESTROY, comment.id, comment.author_id)
                link = self._verification_link(token)
                self._send(
                    comment.author_id,
                    "Delete your comment",
                    f"Follow this link to delete your comment:\n{link}",
                    link,
                )
                return DELETION_CONFIRMATION_SENT
            case _:
                raise ValidationFailedError("Unsupported authentication type")

    def delete_as_owner(self, comment_id: int) -> None:
        comment = self.get(comment_id)
        self._remove(comment)
        self.db.commit()
        logger.info("Comment %s deleted by node owner", comment_id)

    # --- moderation and housekeeping -----------------------------------------------

    def reject(self, comment_id: int) -> Comment:
        """Owner moderation: move a PENDING comment to REJECTED."""
        comment = self.get(comment_id)
        updated = (
            self.db.query(Comment)
            .filter(Comment.id == comment.id, Comment.status == COMMENT_STATUS_PENDING)
            .update(
                {Comment.status: COMMENT_STATUS_REJECTED, Comment.updated_at: utcnow()},
                synchronize_session=False,
            )
        )
        if not updated:
            raise ConflictError(f"Comment is {comment.status}")
        self.db.commit()
        self.db.refresh(comment)
        logger.info("Comment %s rejected", comment.id)
        return comment

    def expire_stale(self, now: datetime | None = None) -> int:
        """Mark PENDING email comments whose confirmation window passed as EXPIRED."""
        cutoff = (now or utcnow()) - timedelta(seconds=settings.comment_token_ttl_seconds)
        expired = (
            self.db.query(Comment)
            .filter(
                Comment.status == COMMENT_STATUS_PENDING,
                Comment.auth_type == AUTH_TYPE_EMAIL,
                Comment.created_at < cutoff,
            )
            .update(
                {Comment.status: COMMENT_STATUS_EXPIRED, Comment.updated_at: utcnow()},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if expired:
            logger.info("Expired %d unconfirmed comments", expired)
        return int(expired)

    def list_confirmed(self, publication_id: int) -> list[Comment]:
        self._publication(publication_id)
        return (
            self.db.query(Comment)
            .filter(
                Comment.publication_id == publication_id,
                Comment.status == COMMENT_STATUS_CONFIRMED,
            )
            .order_by(Comment.created_at.desc(), Comment.id.desc())
            .all()
        )

    def list_all(self, *, status: str | None = None) -> list[Comment]:
        """Owner view of every comment, optionally filtered by status."""
        query = self.db.query(Comment)
        if status:
            query = query.filter(Comment.status == status)
        return query.order_by(Comment.created_at.desc(), Comment.id.desc()).all()
