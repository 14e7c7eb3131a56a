# bulletins/services/signing.py
"""
Signature (et cachet) des bulletins approuvés.

L'empreinte est un sha256 du contenu signé (identité du bulletin, moyennes,
notes figées, signataire, horodatage). Le code de vérification aléatoire
permet de retrouver la signature et de recalculer l'empreinte.
"""
import hashlib
import json
import logging
import secrets
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from bulletins.exceptions import IdempotencyConflict, InvalidTransition
from bulletins.models import Bulletin, BulletinSignature, BulletinStatus
from bulletins.services.documents import BulletinDocumentStore, CacheDocumentStore

logger = logging.getLogger(__name__)


def _signed_content(bulletin, signer_name, signer_position, has_stamp, signed_at) -> str:
    payload = {
        "bulletin_id": bulletin.pk,
        "student_id": bulletin.student_id,
        "class_id": bulletin.school_class_id,
        "term": bulletin.term,
        "academic_year": bulletin.academic_year,
        "general_average": None if bulletin.general_average is None else str(bulletin.general_average),
        "class_rank": bulletin.class_rank,
        "subjects": bulletin.subject_snapshot,
        "signer_name": signer_name,
        "signer_position": signer_position,
        "has_stamp": bool(has_stamp),
        "signed_at": signed_at.isoformat(),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def compute_signature_hash(bulletin, signer_name, signer_position, has_stamp, signed_at) -> str:
    content = _signed_content(bulletin, signer_name, signer_position, has_stamp, signed_at)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def sign_bulletin(bulletin, signer_name: str, signer_position: str = "", has_stamp: bool = False,
                  document_store: Optional[BulletinDocumentStore] = None) -> BulletinSignature:
    """
    Signe un bulletin approuvé.

    Les données de document mises en cache à l'approbation sont invalidées :
    la lecture suivante les reconstruit avec la nouvelle signature.

    Lève ``IdempotencyConflict`` si ce signataire a déjà signé ce bulletin
    (aucune nouvelle ligne n'est créée) et ``InvalidTransition`` si le
    bulletin n'est pas approuvé.
    """
    key = f"{getattr(bulletin, 'pk', bulletin)}:{signer_name}"
    with transaction.atomic():
        locked = Bulletin.objects.select_for_update().get(pk=getattr(bulletin, "pk", bulletin))
        if BulletinSignature.objects.filter(bulletin=locked, signer_name=signer_name).exists():
            raise IdempotencyConflict(key)
        if locked.status != BulletinStatus.APPROVED:
            raise InvalidTransition(locked.status, "sign")

        signed_at = timezone.now()
        try:
            with transaction.atomic():
                signature = BulletinSignature.objects.create(
                    bulletin=locked,
                    signer_name=signer_name,
                    signer_position=signer_position or "",
                    has_stamp=bool(has_stamp),
                    signature_hash=compute_signature_hash(locked, signer_name, signer_position or "", has_stamp, signed_at),
                    verification_code=secrets.token_hex(16),
                    signed_at=signed_at,
                )
        except IntegrityError:
            # signature concurrente du même signataire
            raise IdempotencyConflict(key)

    (document_store or CacheDocumentStore()).evict(locked.pk)
    logger.info("Bulletin %s signed by %s", locked.pk, signer_name)
    return signature


@dataclass
class SigningSummary:
    signed_count: int = 0
    signed: List[int] = field(default_factory=list)
    already_signed: List[int] = field(default_factory=list)
    skipped: List[Dict] = field(default_factory=list)
    failures: List[Dict] = field(default_factory=list)


def bulk_sign(class_id, signer_name: str, signer_position: str = "", has_stamp: bool = False,
              term: Optional[str] = None, academic_year: Optional[str] = None,
              document_store: Optional[BulletinDocumentStore] = None) -> SigningSummary:
    """
    Signe tous les bulletins approuvés d'une classe.

    Chaque bulletin est traité dans son propre point de sauvegarde : un échec
    est enregistré dans ``failures`` sans interrompre les autres. Relancer
    l'opération ne crée aucune signature en double ; les bulletins déjà
    signés sont rapportés dans ``already_signed``.

    Les bulletins sont signés l'un après l'autre sur le thread appelant, pas
    dans un pool : chaque signature prend un verrou de ligne et un point de
    sauvegarde sur la connexion Django du thread courant.
    """
    summary = SigningSummary()
    store = document_store or CacheDocumentStore()
    qs = Bulletin.objects.filter(school_class_id=class_id)
    if term:
        qs = qs.filter(term=term)
    if academic_year:
        qs = qs.filter(academic_year=academic_year)

    for bulletin in qs.order_by("pk"):
        try:
            sign_bulletin(bulletin, signer_name, signer_position, has_stamp, document_store=store)
        except IdempotencyConflict:
            summary.already_signed.append(bulletin.pk)
        except InvalidTransition as exc:
            summary.skipped.append({"bulletin_id": bulletin.pk, "status": exc.current_state})
        except Exception as exc:
            logger.exception("Signing bulletin %s failed", bulletin.pk)
            summary.failures.append({"bulletin_id": bulletin.pk, "error": str(exc)})
        else:
            summary.signed.append(bulletin.pk)
            summary.signed_count += 1

    logger.info(
        "Bulk signing class %s by %s: %d signed, %d already signed, %d skipped, %d failed",
        class_id, signer_name, summary.signed_count,
        len(summary.already_signed), len(summary.skipped), len(summary.failures),
    )
    return summary


@dataclass(frozen=True)
class SignatureVerification:
    valid: bool
    reason: str = ""
    bulletin_id: Optional[int] = None
    signer_name: str = ""
    signed_at: Optional[str] = None


def verify_signature(verification_code: str) -> SignatureVerification:
    signature = (
        BulletinSignature.objects.select_related("bulletin")
        .filter(verification_code=verification_code)
        .first()
    )
    if signature is None:
        return SignatureVerification(valid=False, reason="unknown-code")

    expected = compute_signature_hash(
        signature.bulletin, signature.signer_name, signature.signer_position,
        signature.has_stamp, signature.signed_at,
    )
    valid = secrets.compare_digest(expected, signature.signature_hash)
    if not valid:
        logger.warning("Signature %s does not match bulletin %s content", signature.pk, signature.bulletin_id)
    return SignatureVerification(
        valid=valid,
        reason="" if valid else "content-modified",
        bulletin_id=signature.bulletin_id,
        signer_name=signature.signer_name,
        signed_at=signature.signed_at.isoformat(),
    )
