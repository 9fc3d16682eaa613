"""
Build matrix entries for the releases that need rebuilding.

Each entry describes one image build: the tags to push, the labels and build
args to pass to the build, and the upstream release it is built from. The
provenance labels written here are what the staleness checks read back on
the next run.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from uptracklib import logutil
from uptracklib.config import VariantConfig
from uptracklib.constants import (
    BUILD_ARG_PREFIX,
    DEFAULT_LABEL_PREFIX,
    LABEL_IMAGE_REVISION,
    LABEL_UPSTREAM_DIGESTS,
    LABEL_UPSTREAM_IMAGE,
    LABEL_UPSTREAM_PLATFORMS,
    LABEL_UPSTREAM_TAG,
)
from uptracklib.expression import ExpressionEvaluator, build_context
from uptracklib.model import Expression, MergedRelease, RawImage, RawTag, RebuildReason, ValueOrExpression

logger = logutil.get_logger(__name__)


@dataclass(frozen=True)
class Separators:
    tags: str = '\n'
    labels: str = '\n'
    build_args: str = '\n'


@dataclass(frozen=True)
class MatrixEntry:
    name: str
    namespace: str
    image_name: str
    main_tag: str
    upstream_name: str
    upstream_namespace: str
    upstream_image_name: str
    upstream_tag: str
    labels: str
    tags: str
    upstream_tags: str
    build_args: str
    build_target: str
    digests: str
    platforms: str
    os: str
    architecture: str
    last_pushed: int
    reason: str

    @property
    def full_image_name(self) -> str:
        return f'{self.image_name}:{self.main_tag}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'namespace': self.namespace,
            'imageName': self.image_name,
            'fullImageName': self.full_image_name,
            'mainTag': self.main_tag,
            'upstream': {
                'name': self.upstream_name,
                'namespace': self.upstream_namespace,
                'imageName': f'{self.upstream_image_name}:{self.upstream_tag}',
                'tag': self.upstream_tag,
            },
            'labels': self.labels,
            'tags': self.tags,
            'upstreamTags': self.upstream_tags,
            'buildArgs': self.build_args,
            'buildTarget': self.build_target,
            'digests': self.digests,
            'platforms': self.platforms,
            'os': self.os,
            'architecture': self.architecture,
            'lastPushed': self.last_pushed,
            'reason': self.reason,
        }


def join_pairs(values: Mapping[str, Any], separator: str) -> str:
    return separator.join(f'{k}={v}' for k, v in values.items())


class MatrixAssembler:
    def __init__(
        self,
        variant: VariantConfig,
        evaluator: ExpressionEvaluator,
        label_prefix: str = DEFAULT_LABEL_PREFIX,
        build_hash: str = '',
        separators: Optional[Separators] = None,
    ):
        self.variant = variant
        self.evaluator = evaluator
        self.label_prefix = label_prefix
        self.build_hash = build_hash
        self.separators = separators or Separators()

    def label(self, name: str) -> str:
        return f'{self.label_prefix}{name}'

    def _expression_context(self, release: MergedRelease) -> Dict[str, Any]:
        # expressions see the registry records of the release's reference tag and image
        tag = release.release_tag.raw or RawTag(name=release.release_tag.name)
        image = release.release_image.raw or RawImage(
            digest=release.release_image.digest,
            os=release.release_image.os,
            architecture=release.release_image.architecture,
        )
        return build_context(tag, image, self.variant.to_context())

    def _resolve(self, value: ValueOrExpression, context: Mapping[str, Any]) -> Optional[str]:
        if isinstance(value, Expression):
            result = self.evaluator.evaluate_optional(value.expression, context)
            if result is None:
                logger.warning('Expression "%s" is empty. Skipping', value.expression)
            return result
        return value

    def _resolve_values(self, values: Mapping[str, ValueOrExpression], context) -> Dict[str, str]:
        result = {}
        for name, value in values.items():
            resolved = self._resolve(value, context)
            if resolved is not None:
                result[name] = resolved
        return result

    def assemble(self, release: MergedRelease, reason: RebuildReason) -> MatrixEntry:
        """
        :param release: A release that needs rebuilding
        :param reason: Why it needs rebuilding
        :raises ExpressionError: if a configured expression fails
        """
        variant = self.variant
        rule = release.release_tag.rule
        upstream_tag = release.upstream_tag

        extra_tags: List[ValueOrExpression] = list(variant.extra_tags)
        build_args: Dict[str, ValueOrExpression] = dict(variant.build_args)
        labels: Dict[str, ValueOrExpression] = dict(variant.labels)
        build_target = variant.build_target
        if rule is not None:
            extra_tags.extend(rule.extra_tags)
            build_args.update(rule.extra_build_args)
            labels.update(rule.extra_labels)
            build_target = rule.build_target or build_target

        context = self._expression_context(release)

        image_tags = dict.fromkeys(release.tags.values())
        for tag in extra_tags:
            resolved = self._resolve(tag, context)
            if resolved is not None:
                image_tags[resolved] = None
        image_tags = list(image_tags)

        digests = release.sorted_digests
        all_labels = {
            self.label(LABEL_UPSTREAM_IMAGE): variant.upstream.image_name,
            self.label(LABEL_UPSTREAM_TAG): upstream_tag,
            self.label(LABEL_UPSTREAM_PLATFORMS): release.platforms,
            self.label(LABEL_UPSTREAM_DIGESTS): digests,
            self.label(LABEL_IMAGE_REVISION): self.build_hash,
            **self._resolve_values(labels, context),
        }
        all_build_args = {
            f'{BUILD_ARG_PREFIX}SOURCE': f'{variant.upstream.image_name}:{upstream_tag}',
            f'{BUILD_ARG_PREFIX}IMAGE': variant.upstream.image_name,
            f'{BUILD_ARG_PREFIX}TAG': upstream_tag,
            f'{BUILD_ARG_PREFIX}PLATFORMS': release.platforms,
            f'{BUILD_ARG_PREFIX}DIGESTS': digests,
            f'{BUILD_ARG_PREFIX}OS': release.os,
            f'{BUILD_ARG_PREFIX}ARCH': release.architecture,
            f'{BUILD_ARG_PREFIX}LAST_PUSHED': release.last_pushed,
            f'{BUILD_ARG_PREFIX}REVISION': self.build_hash,
            **self._resolve_values(build_args, context),
        }

        return MatrixEntry(
            name=variant.name,
            namespace=variant.namespace,
            image_name=variant.image_name,
            main_tag=image_tags[0],
            upstream_name=variant.upstream.name,
            upstream_namespace=variant.upstream.namespace,
            upstream_image_name=variant.upstream.image_name,
            upstream_tag=upstream_tag,
            labels=join_pairs(all_labels, self.separators.labels),
            tags=self.separators.tags.join(image_tags),
            upstream_tags=','.join(release.tags),
            build_args=join_pairs(all_build_args, self.separators.build_args),
            build_target=build_target or '',
            digests=digests,
            platforms=release.platforms,
            os=release.os,
            architecture=release.architecture,
            last_pushed=release.last_pushed,
            reason=reason.value,
        )

    def assemble_all(self, decisions: Iterable) -> List[MatrixEntry]:
        """Entries for every (release, verdict) pair whose verdict is a rebuild, in order"""
        return [self.assemble(release, verdict.reason) for release, verdict in decisions if verdict.rebuild]
