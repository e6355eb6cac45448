"""
Profile-driven validation of FHIR resource documents.

``Validator.validate_resource`` runs the full pipeline for one document:
resolve the profile, index it, check the declaration and top-level
properties, then walk the document along the element rules. Fatal
pre-walk failures return a single issue; everything found during the
walk is accumulated. Nothing raises out of a validation call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Optional

from ..config import Settings, get_settings
from ..core import profile_index
from ..core.errors import IssueCode, ValidationResult, create_issue, fatal_result
from ..core.exceptions import MalformedProfileError, ResourceValidationError
from ..core.metrics import ValidatorMetrics, metrics as default_metrics
from ..core.profile_store import FileProfileStore, ProfileStore, profile_urls
from ..core.schemas import Profile
from ..core.terminology import StaticTerminologyResolver, TerminologyResolver, build_terminology_resolver
from ..core.tracing import trace_validation
from ..core.value import MISSING, freeze, get_path, is_mapping, matches_choice
from .constraints import ConstraintEvaluator, FhirPathEvaluator, build_evaluator
from .context import ValidationContext
from .walker import walk

logger = logging.getLogger(__name__)

ROOT_PATH = "root"


class Validator:
    """
    Validates documents against profiles resolved from a ``ProfileStore``.

    The instance only holds its collaborators; per-call state lives in a
    ``ValidationContext`` built inside each call, so one validator can
    serve concurrent calls.
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        resolver: Optional[TerminologyResolver] = None,
        evaluator: Optional[ConstraintEvaluator] = None,
        settings: Optional[Settings] = None,
        metrics: Optional[ValidatorMetrics] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.profile_store = profile_store
        self.resolver: TerminologyResolver = resolver or StaticTerminologyResolver()
        self.evaluator: ConstraintEvaluator = evaluator or FhirPathEvaluator()
        self.metrics = metrics or default_metrics

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Validator":
        """Validator over the configured profile files and terminology server."""
        settings = settings or get_settings()
        resolver: TerminologyResolver = (
            build_terminology_resolver(settings) if settings.TERMINOLOGY_ENABLED else StaticTerminologyResolver()
        )
        return cls(
            FileProfileStore(settings).load(),
            resolver=resolver,
            evaluator=build_evaluator(settings.CONSTRAINT_ENGINE),
            settings=settings,
        )

    async def validate_resource(self, document: Any) -> ValidationResult:
        resource_type = document.get("resourceType") if is_mapping(document) else None
        label = resource_type if isinstance(resource_type, str) else "unknown"

        with trace_validation(label) as span, self.metrics.time_validation(label):
            result, profile = await self._validate(document, resource_type)

            span.set_attribute("fhir.profile", profile.canonical_url if profile else "")
            span.set_attribute("fhir.errors", len(result.errors))
            span.set_attribute("fhir.warnings", len(result.warnings))

        self.metrics.record_validation(label, result.is_valid, result.issues)
        logger.info(
            f"Validated {label}: {len(result.errors)} error(s), {len(result.warnings)} warning(s)",
            extra={
                "resource_type": label,
                "profile": profile.canonical_url if profile else None,
                "errors": len(result.errors),
                "warnings": len(result.warnings),
            },
        )
        return result

    async def validate_resource_or_raise(self, document: Any) -> ValidationResult:
        result = await self.validate_resource(document)
        if not result.is_valid:
            label = document.get("resourceType") if is_mapping(document) else None
            raise ResourceValidationError(
                f"{label or 'Document'} failed validation with {len(result.errors)} error(s)",
                result,
            )
        return result

    async def validate_many(self, documents: Iterable[Any]) -> List[ValidationResult]:
        """Validate documents concurrently; results come back in input order."""
        return list(await asyncio.gather(*(self.validate_resource(d) for d in documents)))

    async def _validate(self, document: Any, resource_type: Any) -> tuple[ValidationResult, Optional[Profile]]:
        if not isinstance(resource_type, str) or not resource_type:
            return fatal_result(
                IssueCode.MISSING_RESOURCE_TYPE,
                "resourceType",
                "Document has no resourceType",
            ), None

        declared = get_path(document, "meta.profile")
        declared = None if declared is MISSING else declared
        urls = profile_urls(declared)

        profile = await self._lookup(resource_type, declared)
        if profile is None:
            if urls == []:
                return fatal_result(
                    IssueCode.UNKNOWN_RESOURCE_TYPE,
                    "resourceType",
                    f"No profile available for resource type {resource_type}",
                ), None
            return fatal_result(
                IssueCode.PROFILE_NOT_FOUND,
                "meta.profile",
                f"None of the declared profiles {declared!r} is available for {resource_type}",
            ), None

        try:
            index = profile_index.build(profile)
        except MalformedProfileError as e:
            logger.warning(f"Malformed profile {profile.canonical_url}: {e}")
            return fatal_result(IssueCode.MALFORMED_PROFILE, resource_type, str(e)), profile

        if profile.resource_type != resource_type:
            return fatal_result(
                IssueCode.RESOURCE_TYPE_MISMATCH,
                "resourceType",
                f"Resource type {resource_type} does not match profile type {profile.resource_type}",
            ), profile

        ctx = ValidationContext(
            index=index,
            document=freeze(document),
            resolver=self.resolver,
            evaluator=self.evaluator,
            max_depth=self.settings.MAX_WALK_DEPTH,
        )

        if not urls or profile.canonical_url not in urls:
            ctx.errors.append(create_issue(
                IssueCode.PROFILE_NOT_DECLARED,
                "meta.profile",
                f"Profile {profile.canonical_url} is not declared in meta.profile",
            ))

        self._scan_properties(ctx)

        try:
            await walk(resource_type, ctx.document, ctx)
        except Exception as e:
            logger.exception(f"Validation of {resource_type} failed internally")
            ctx.errors.append(create_issue(
                IssueCode.INTERNAL_VALIDATION_ERROR,
                ROOT_PATH,
                f"Internal validation error: {e}",
            ))

        return ValidationResult(errors=ctx.errors, warnings=ctx.warnings), profile

    async def _lookup(self, resource_type: str, declared: Any) -> Optional[Profile]:
        try:
            return await self.profile_store.lookup(resource_type, declared)
        except Exception as e:
            logger.warning(f"Profile lookup for {resource_type} failed: {e}")
            return None

    def _scan_properties(self, ctx: ValidationContext) -> None:
        """UnexpectedProperty for every top-level property without a rule."""
        root = ctx.resource_type
        root_rules = ctx.index.child_rules(root)
        prefixes = tuple(self.settings.CHOICE_ELEMENT_PREFIXES)

        for key in ctx.document:
            if key == "resourceType" or key.startswith("_"):
                continue
            if ctx.index.rule_for(f"{root}.{key}") is not None:
                continue
            if any(matches_choice(key, rule.name) for rule in root_rules):
                continue
            if prefixes and key.startswith(prefixes):
                continue
            ctx.errors.append(create_issue(
                IssueCode.UNEXPECTED_PROPERTY,
                key,
                f"Unexpected property '{key}' in {root}",
            ))
