"""
Decides, for every variant of a configuration file, which upstream releases
need a (re)build and emits the build matrix for them.

Every option falls back to the environment variable GitHub Actions sets for
the action input of the same name (INPUT_<NAME>).
"""

import json
import sys
from typing import Any, Dict, List, Optional

import click

from uptracklib import revision
from uptracklib.cli import cli, click_coroutine, pass_runtime
from uptracklib.config import ConfigError, load_variants
from uptracklib.constants import DEFAULT_CONCURRENCY, DEFAULT_CONFIG_PATH, DEFAULT_LABEL_PREFIX
from uptracklib.context import SOURCES, Context, get_context
from uptracklib.expression import ExpressionError
from uptracklib.format_util import green_print, red_print
from uptracklib.image_info import ImageInspectionError
from uptracklib.matrix import Separators
from uptracklib.merge import ReleaseConsistencyError
from uptracklib.output import append_summary, set_output
from uptracklib.reconciler import VariantReconciler
from uptracklib.registry import RegistryError
from uptracklib.runtime import Runtime
from uptracklib.summary import render_variant_summary

# Failures that abort the run with an error message rather than a traceback
RUN_ERRORS = (
    ConfigError,
    ReleaseConsistencyError,
    ExpressionError,
    RegistryError,
    ImageInspectionError,
    revision.RevisionError,
    ChildProcessError,
)


class Check:
    def __init__(
        self,
        runtime: Runtime,
        config_path: str,
        context_source: str,
        rev_provider: str,
        force: bool,
        username: Optional[str],
        password: Optional[str],
        label_prefix: str,
        separators: Separators,
        output_file: Optional[str] = None,
        summary_file: Optional[str] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        registry_config: Optional[str] = None,
    ):
        self.runtime = runtime
        self.config_path = config_path
        self.context_source = context_source
        self.rev_provider = rev_provider
        self.force = force
        self.username = username
        self.password = password
        self.label_prefix = label_prefix
        self.separators = separators
        self.output_file = output_file
        self.summary_file = summary_file
        self.concurrency = concurrency
        self.registry_config = registry_config

    def _log_context(self, context: Context):
        for key, value in context.to_dict().items():
            self.runtime.logger.info("%s: %s", key, value)
        self.runtime.logger.debug("Webhook payload: %s", json.dumps(context.payload, indent=2))

    async def run(self) -> List[Dict[str, Any]]:
        context = await get_context(self.context_source)
        self._log_context(context)

        self.runtime.logger.info('Parsing "%s" config file', self.config_path)
        variants = load_variants(self.config_path)

        evaluator = self.runtime.new_expression_evaluator()
        inspector = self.runtime.new_image_inspector(self.registry_config)
        matrix: List[Dict[str, Any]] = []

        async with self.runtime.new_registry_client(self.username, self.password) as registry:
            reconciler = VariantReconciler(
                registry,
                inspector,
                evaluator,
                label_prefix=self.label_prefix,
                force=self.force,
                separators=self.separators,
                concurrency=self.concurrency,
            )
            for variant in variants:
                self.runtime.logger.info('Processing variant "%s"', variant.image_name)
                build_hash = await revision.resolve_build_hash(
                    self.rev_provider, self.config_path, variant.include, context.sha
                )
                result = await reconciler.reconcile(variant, build_hash)
                append_summary(
                    self.summary_file,
                    render_variant_summary(result, context, self.label_prefix, self.separators),
                )
                matrix.extend(entry.to_dict() for entry in result.matrix)

        set_output(self.output_file, "matrix", matrix)
        return matrix


@cli.command("check", help="Decide which images need to be rebuilt and print the build matrix")
@click.option(
    "--config",
    "config_path",
    envvar="INPUT_CONFIG",
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path of the configuration file (JSON or YAML)",
)
@click.option(
    "--context",
    "context_source",
    envvar="INPUT_CONTEXT",
    type=click.Choice(SOURCES),
    default="workflow",
    show_default=True,
    help="Where to read the commit being built from",
)
@click.option(
    "--rev-provider",
    envvar=["INPUT_REV-PROVIDER", "INPUT_REV_PROVIDER"],
    type=click.Choice(revision.PROVIDERS),
    default=revision.PROVIDER_GIT,
    show_default=True,
    help="Build identity: the commit sha (git) or the tree hash of the config folder (config)",
)
@click.option("--force", envvar="INPUT_FORCE", is_flag=True, default=False, help="Rebuild up to date images too")
@click.option("--username", envvar="INPUT_USERNAME", default=None, help="Docker Hub username")
@click.option("--password", envvar="INPUT_PASSWORD", default=None, help="Docker Hub password or access token")
@click.option(
    "--label-prefix",
    envvar=["INPUT_LABEL-PREFIX", "INPUT_LABEL_PREFIX"],
    default=DEFAULT_LABEL_PREFIX,
    show_default=True,
    help="Prefix of the provenance labels",
)
@click.option("--sep-tags", envvar=["INPUT_SEP-TAGS", "INPUT_SEP_TAGS"], default="\n", help="Separator of image tags")
@click.option(
    "--sep-labels", envvar=["INPUT_SEP-LABELS", "INPUT_SEP_LABELS"], default="\n", help="Separator of labels"
)
@click.option(
    "--sep-build-args",
    envvar=["INPUT_SEP-BUILD-ARGS", "INPUT_SEP_BUILD_ARGS"],
    default="\n",
    help="Separator of build args",
)
@click.option(
    "--output-file", envvar="GITHUB_OUTPUT", default=None, help="File the matrix output is appended to"
)
@click.option(
    "--summary-file", envvar="GITHUB_STEP_SUMMARY", default=None, help="File the markdown summary is appended to"
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=DEFAULT_CONCURRENCY,
    show_default=True,
    help="Maximum number of images inspected in parallel",
)
@click.option("--registry-config", default=None, help="Registry auth file used to inspect images")
@pass_runtime
@click_coroutine
async def check(
    runtime: Runtime,
    config_path: str,
    context_source: str,
    rev_provider: str,
    force: bool,
    username: Optional[str],
    password: Optional[str],
    label_prefix: str,
    sep_tags: str,
    sep_labels: str,
    sep_build_args: str,
    output_file: Optional[str],
    summary_file: Optional[str],
    concurrency: int,
    registry_config: Optional[str],
):
    pipeline = Check(
        runtime=runtime,
        config_path=config_path,
        context_source=context_source,
        rev_provider=rev_provider,
        force=force,
        username=username,
        password=password,
        label_prefix=label_prefix,
        separators=Separators(tags=sep_tags, labels=sep_labels, build_args=sep_build_args),
        output_file=output_file,
        summary_file=summary_file,
        concurrency=concurrency,
        registry_config=registry_config,
    )
    try:
        matrix = await pipeline.run()
    except RUN_ERRORS as e:
        red_print(f"Error: {e}")
        sys.exit(1)

    click.echo(json.dumps(matrix, indent=2))
    if matrix:
        green_print(f"{len(matrix)} images to build", file=sys.stderr)
    else:
        green_print("All images are up to date", file=sys.stderr)
