"""Markdown job summary of a variant's reconciliation"""

import json
from typing import List, Optional

from uptracklib.context import Context
from uptracklib.format_util import md_code, md_table
from uptracklib.matrix import Separators
from uptracklib.reconciler import VariantResult


def render_variant_summary(
    result: VariantResult,
    context: Context,
    label_prefix: str,
    separators: Optional[Separators] = None,
) -> str:
    separators = separators or Separators()
    variant = result.variant
    lines: List[str] = [
        f'## Docker UpTrack Summary for Variant "{variant.image_name}"',
        '',
        'Decides which Docker images need to be rebuilt.',
        '',
        f'- Current build revision: {md_code(result.build_hash)}',
        f'- Image name: {md_code(variant.image_name)}',
        f'- Upstream image name: {md_code(variant.upstream.image_name)}',
        f'- Event: {md_code(context.event_name)}',
        f'- Workflow: {md_code(context.workflow)}',
        f'- Run ID: {md_code(context.run_id)}',
        '',
        '<details><summary><strong>Configuration</strong></summary>',
        '',
        '```json',
        json.dumps(variant.source, indent=2),
        '```',
        '',
        '</details>',
        '',
    ]

    if not result.matrix:
        lines.extend(['### No Images to Build', '', 'All images are up to date. No builds required.', ''])
        return '\n'.join(lines)

    rows = []
    for entry in result.matrix:
        tags = entry.tags.split(separators.tags)
        rows.append(
            [
                '\n'.join(md_code(f'docker pull {entry.image_name}:{t}') for t in tags),
                md_code(entry.upstream_tag),
                '\n'.join(md_code(t) for t in tags),
                '\n'.join(md_code(p) for p in entry.platforms.split(',')),
                md_code(entry.build_target) if entry.build_target else '',
                '\n'.join(md_code(a) for a in entry.build_args.split(separators.build_args)),
                '\n'.join(md_code(label) for label in entry.labels.split(separators.labels)),
                entry.reason,
            ]
        )

    lines.extend(
        [
            '### Tag Mappings Matrix',
            '',
            md_table(
                ['Image', 'Upstream Tag', 'Mapped Tags', 'Platforms', 'Target', 'Build Args', 'Labels', 'Reason'], rows
            ),
            '',
            f'### Build Matrix ({len(result.matrix)} images to build)',
            '',
            f'- Total upstream tags processed: **{len(result.tags)}**',
            f'- Filtered tags remaining: **{len(result.matched)}**',
            f'- Unique builds required: **{len(result.matrix)}**',
            f'- Image name: **{variant.image_name}**',
            f'- Label prefix: **{label_prefix}**',
            '',
            '---',
            '',
            '<details><summary><strong>Matrix Output</strong></summary>',
            '',
            '```json',
            json.dumps([e.to_dict() for e in result.matrix], indent=2),
            '```',
            '',
            '</details>',
            '',
        ]
    )
    return '\n'.join(lines)
