"""
Reconciliation of one variant: list upstream tags, filter and merge them into
releases, decide which releases need rebuilding and assemble their build
matrix entries.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from opentelemetry import trace

from uptracklib import exectools, logutil
from uptracklib.config import VariantConfig
from uptracklib.constants import DEFAULT_CONCURRENCY, DEFAULT_LABEL_PREFIX, DEFAULT_PAGE_SIZE
from uptracklib.expression import ExpressionEvaluator
from uptracklib.filters import filter_tags, summarize
from uptracklib.image_info import ImageInspector
from uptracklib.matrix import MatrixAssembler, MatrixEntry, Separators
from uptracklib.merge import merge_releases
from uptracklib.model import MatchedTag, MergedRelease, RawTag, Verdict
from uptracklib.registry import DockerHubClient
from uptracklib.staleness import StalenessChecker
from uptracklib.telemetry import set_span_attributes, start_as_current_span_async

TRACER = trace.get_tracer(__name__)

Decision = Tuple[MergedRelease, Verdict]


@dataclass
class VariantResult:
    variant: VariantConfig
    build_hash: str
    tags: List[RawTag] = field(default_factory=list)
    matched: List[MatchedTag] = field(default_factory=list)
    releases: List[MergedRelease] = field(default_factory=list)
    decisions: List[Decision] = field(default_factory=list)
    matrix: List[MatrixEntry] = field(default_factory=list)

    @property
    def rebuilds(self) -> List[Decision]:
        return [(release, verdict) for release, verdict in self.decisions if verdict.rebuild]


class VariantReconciler:
    def __init__(
        self,
        registry: DockerHubClient,
        inspector: ImageInspector,
        evaluator: ExpressionEvaluator,
        label_prefix: str = DEFAULT_LABEL_PREFIX,
        force: bool = False,
        separators: Optional[Separators] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self.registry = registry
        self.inspector = inspector
        self.evaluator = evaluator
        self.label_prefix = label_prefix
        self.force = force
        self.separators = separators or Separators()
        self.concurrency = concurrency

    async def decide(self, variant: VariantConfig, releases: List[MergedRelease], build_hash: str) -> List[Decision]:
        """Verdicts for every release, in release order"""
        checker = StalenessChecker(
            self.inspector,
            label_prefix=self.label_prefix,
            upstream_image=variant.upstream.image_name,
            build_hash=build_hash,
            force=self.force,
        )
        check = exectools.limit_concurrency(self.concurrency)(checker.check)
        platform = variant.reference_platform
        verdicts = await asyncio.gather(
            *(check(release, f'{variant.image_name}:{release.downstream_tag}', platform) for release in releases)
        )
        return list(zip(releases, verdicts))

    @start_as_current_span_async(TRACER, "reconciler.reconcile_variant")
    async def reconcile(self, variant: VariantConfig, build_hash: str) -> VariantResult:
        """
        :param variant: The variant to reconcile
        :param build_hash: Build identity of the variant's sources
        :raises ReleaseConsistencyError: if the upstream images cannot be merged into releases
        :raises ExpressionError: if a configured expression fails
        """
        span = trace.get_current_span()
        set_span_attributes({"uptrack.variant": variant.image_name, "uptrack.upstream": variant.upstream.image_name}, span)
        logger = logutil.get_entity_logger(variant.image_name, __name__)

        result = VariantResult(variant=variant, build_hash=build_hash)

        logger.info('Loading Docker image "%s" tags', variant.upstream.image_name)
        result.tags = await self.registry.list_tags(
            variant.upstream.namespace,
            variant.upstream.name,
            page_size=DEFAULT_PAGE_SIZE,
            page_limit=variant.filters.page_limit,
        )
        logger.info('Loaded %s tags', len(result.tags))

        result.matched = await filter_tags(result.tags, variant, self.evaluator)
        logger.info('Tags: %s', list(summarize(result.matched)))
        logger.info('%s left after filtering', len(result.matched))

        result.releases = merge_releases(result.matched, variant.platforms)
        logger.info('Total %s unique image builds found', len(result.releases))

        result.decisions = await self.decide(variant, result.releases, build_hash)

        assembler = MatrixAssembler(
            variant, self.evaluator, label_prefix=self.label_prefix, build_hash=build_hash, separators=self.separators
        )
        result.matrix = assembler.assemble_all(result.decisions)
        span.set_attribute("uptrack.rebuilds", len(result.matrix))
        logger.info('%s of %s releases need rebuilding', len(result.matrix), len(result.releases))
        return result
