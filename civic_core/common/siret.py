# civic_core/common/siret.py
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, replace
from typing import Any, Optional

import requests

from civic_core.common.conf import BillingSettings, load_billing_settings

logger = logging.getLogger(__name__)

_SIRET_RE = re.compile(r"^\d{14}$")

FORMAT_ERROR = "Format SIRET invalide (14 chiffres requis)"
NOT_FOUND_ERROR = "SIRET non trouvé dans la base SIRENE"


@dataclass(frozen=True)
class SiretValidationResult:
    is_valid: bool
    siret: str
    siren: Optional[str] = None
    nic: Optional[str] = None
    denomination: Optional[str] = None
    postal_code: Optional[str] = None
    commune: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def clean_siret(value: str) -> str:
    return re.sub(r"\s", "", value or "")


def validate_siret_format(value: str) -> SiretValidationResult:
    siret = clean_siret(value)
    if not _SIRET_RE.match(siret):
        return SiretValidationResult(is_valid=False, siret=siret, error=FORMAT_ERROR)
    return SiretValidationResult(is_valid=True, siret=siret, siren=siret[:9], nic=siret[9:])


def _lookup(result: SiretValidationResult, conf: BillingSettings) -> SiretValidationResult:
    headers = {"Accept": "application/json"}
    if conf.siret_lookup_token:
        headers["Authorization"] = f"Bearer {conf.siret_lookup_token}"

    try:
        response = requests.get(
            conf.siret_lookup_url.format(siret=result.siret),
            headers=headers,
            timeout=conf.siret_lookup_timeout,
        )
    except requests.exceptions.RequestException as exc:
        logger.warning("SIRENE lookup failed for %s: %s", result.siret, exc)
        return result

    if response.status_code == 404:
        return replace(result, is_valid=False, error=NOT_FOUND_ERROR)
    if response.status_code == 403:
        logger.info("SIRENE lookup requires authentication; using format validation only")
        return result
    if response.status_code != 200:
        logger.warning("SIRENE lookup returned HTTP %s for %s", response.status_code, result.siret)
        return result

    try:
        data = response.json()
    except ValueError:
        logger.warning("SIRENE lookup returned a non-JSON body for %s", result.siret)
        return result

    etablissement = data.get("etablissement") or {}
    unite = etablissement.get("uniteLegale") or {}
    adresse = etablissement.get("adresseEtablissement") or {}

    denomination = unite.get("denominationUniteLegale") or " ".join(
        p for p in (unite.get("prenomUsuelUniteLegale"), unite.get("nomUniteLegale")) if p
    )
    return replace(
        result,
        denomination=denomination or None,
        postal_code=adresse.get("codePostalEtablissement"),
        commune=adresse.get("libelleCommuneEtablissement"),
    )


def validate_siret(value: str, *, lookup: bool = False, conf: BillingSettings | None = None) -> SiretValidationResult:
    """
    Format check (14 digits, whitespace ignored), then optionally the SIRENE registry.

    Registry outcome:
      - 404 -> invalid ("not found")
      - 403 / other HTTP errors / network errors -> degrade to the format-only result
      - 200 -> enriched with denomination, postal code, commune
    """
    result = validate_siret_format(value)
    if not result.is_valid or not lookup:
        return result
    return _lookup(result, conf or load_billing_settings())
