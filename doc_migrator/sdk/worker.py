"""
Document migration worker.

Adds YAML frontmatter to a single document using the LLM.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from ..core.tasks import MigrationResult, MigrationTask
from .llm_client import GuardedLLMClient

logger = logging.getLogger(__name__)

_FRONTMATTER_BLOCK = re.compile(r"^---\s*\n(.*?)\n---\s*$", re.MULTILINE | re.DOTALL)
_EXISTING_FRONTMATTER = re.compile(r"^---\s*\n.*?\n---\s*\n", re.DOTALL)

SYSTEM_PROMPT = (
    "You migrate project documentation. Reply with YAML frontmatter only, "
    "delimited by --- lines."
)


def extract_frontmatter(response: str) -> Optional[str]:
    """Pull a YAML frontmatter block out of a model reply.

    Returns:
        The block including its --- markers, or None if the reply has no
        block that parses to a mapping
    """
    match = _FRONTMATTER_BLOCK.search(response)
    if not match:
        return None
    body = match.group(1).strip()
    try:
        parsed = yaml.safe_load(body)
    except yaml.YAMLError:
        return None
    if not isinstance(parsed, dict):
        return None
    return f"---\n{body}\n---"


def combine_content(frontmatter: str, content: str) -> str:
    """Replace existing frontmatter, or prepend it."""
    if _EXISTING_FRONTMATTER.match(content):
        return _EXISTING_FRONTMATTER.sub(lambda _: frontmatter + "\n\n", content, count=1)
    return f"{frontmatter}\n\n{content}"


class DocumentMigrationWorker:
    """Migrates one document per call.

    Failures are returned as unsuccessful results, never raised.
    """

    def __init__(
        self,
        client: GuardedLLMClient,
        root_dir: Union[str, Path],
        schemas: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the worker.

        Args:
            client: LLM client
            root_dir: Directory relative task paths resolve against
            schemas: Optional frontmatter schema per document type
        """
        self.client = client
        self.root_dir = Path(root_dir)
        self.schemas = schemas

    def _resolve(self, path: str) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root_dir / p

    def build_prompt(self, content: str, doc_type: str, schema: Optional[Any]) -> str:
        parts = [
            "Generate YAML frontmatter for the following document.",
            "",
            f"Document Type: {doc_type}",
        ]
        if schema is not None:
            parts += ["Schema Definition:", yaml.safe_dump(schema, sort_keys=False).rstrip()]
        parts += [
            "",
            "Original Document Content:",
            "---",
            content,
            "---",
            "",
            "The frontmatter must follow the schema, extract metadata from the "
            "content where possible and use sensible defaults for missing fields.",
            "Output ONLY the YAML frontmatter (including --- markers):",
        ]
        return "\n".join(parts)

    async def execute(self, task: MigrationTask) -> MigrationResult:
        schema = None
        if self.schemas is not None:
            schema = self.schemas.get(task.doc_type)
            if schema is None:
                return MigrationResult(
                    task=task,
                    success=False,
                    error=f"No schema found for document type: {task.doc_type}",
                )

        try:
            content = await asyncio.to_thread(self._resolve(task.source_path).read_text, encoding="utf-8")
            response = await self.client.complete([
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self.build_prompt(content, task.doc_type, schema)},
            ])
        except Exception as e:
            logger.debug("Migration call failed for %s", task.source_path, exc_info=True)
            return MigrationResult(task=task, success=False, error=str(e))

        frontmatter = extract_frontmatter(response.text)
        if frontmatter is None:
            return MigrationResult(
                task=task,
                success=False,
                model=response.model,
                usage=response.usage,
                error="Failed to extract frontmatter from model response",
            )

        target = self._resolve(task.target_path)
        try:
            await asyncio.to_thread(self._write, target, combine_content(frontmatter, content))
        except OSError as e:
            return MigrationResult(
                task=task,
                success=False,
                model=response.model,
                usage=response.usage,
                error=f"Failed to write {target}: {e}",
            )

        return MigrationResult(
            task=task,
            success=True,
            output_path=str(target),
            model=response.model,
            usage=response.usage,
        )

    @staticmethod
    def _write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
