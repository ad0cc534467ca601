import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Union

from langsmith import traceable
from pydantic import ValidationError

from .analyzer import ContentAnalyzer
from .character import CharacterReferenceExtractor
from .context import NarrativeContext
from .errors import InvalidOptionsError
from .extractor import ContentExtractor
from .graph import create_generation_graph
from .models import ComicStatus, GenerationOptions, Panel, PanelHistoryEntry, PanelScript, utcnow
from .scripts import ScriptGenerator
from .steps import DurableStep, RetryingStepRunner
from .store import ComicStore
from .synthesizer import PanelImageSynthesizer
from .text_detection import TextBoxDetector

logger = logging.getLogger(__name__)


class ComicLocks:
    """One lock per comic id, shared by the full run and single-panel jobs.

    Only serializes work inside one process; separate workers are not coordinated.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        # Holders plus waiters per comic; the entry goes away when it drops to zero.
        self._users: Dict[str, int] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, comic_id: str):
        with self._guard:
            lock = self._locks.setdefault(comic_id, threading.Lock())
            self._users[comic_id] = self._users.get(comic_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[comic_id] -= 1
                if not self._users[comic_id]:
                    del self._users[comic_id]
                    del self._locks[comic_id]

    def is_locked(self, comic_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(comic_id)
        return lock is not None and lock.locked()


class ComicPipeline:
    """Drives a comic from draft to completed/failed, and single-panel edits afterwards."""

    def __init__(
        self,
        store: ComicStore,
        extractor: ContentExtractor,
        analyzer: ContentAnalyzer,
        script_generator: ScriptGenerator,
        reference_extractor: CharacterReferenceExtractor,
        synthesizer: PanelImageSynthesizer,
        text_detector: Optional[TextBoxDetector] = None,
        step_runner_factory: Callable[[], DurableStep] = RetryingStepRunner,
        locks: Optional[ComicLocks] = None,
        narrative_max_entries: int = 6,
        narrative_max_chars: int = 1500,
        project_name: str = "notes2comic",
    ):
        self.store = store
        self.extractor = extractor
        self.analyzer = analyzer
        self.script_generator = script_generator
        self.reference_extractor = reference_extractor
        self.synthesizer = synthesizer
        self.text_detector = text_detector
        self.step_runner_factory = step_runner_factory
        self.locks = locks if locks is not None else ComicLocks()
        self.narrative_max_entries = narrative_max_entries
        self.narrative_max_chars = narrative_max_chars
        self.project_name = project_name

    # Full run

    def generate_comic(self, comic_id: str, input_ref: str, input_type: str,
                       options: Union[GenerationOptions, dict, None] = None) -> None:
        """Runs the whole pipeline for one comic.

        Any exception that escapes the step retries marks the comic failed and is
        re-raised. Panels persisted before the failure are kept. Options are
        resolved once the comic is generating, so invalid options fail it too.
        """
        initial_state = {
            "comic_id": comic_id,
            "input_ref": input_ref,
            "input_type": getattr(input_type, "value", input_type),
            "options": options,
            "current_step": "start",
        }
        config = {
            "metadata": {"comic_id": comic_id, "action": "generate", "input_type": initial_state["input_type"]},
            "tags": ["comic-generation", f"comic-{comic_id}"],
        }

        @traceable(name="generate_comic_flow", project_name=self.project_name)
        def run_traced():
            graph = create_generation_graph(self, self.step_runner_factory())
            return graph.invoke(initial_state, config=config)

        with self.locks.hold(comic_id):
            try:
                run_traced()
            except Exception as e:
                logger.exception(f"[ComicPipeline] Comic {comic_id} generation failed: {e}")
                self._mark_failed(comic_id)
                raise

    def resolve_options(self, comic_id: str, options: Union[GenerationOptions, dict, None]) -> GenerationOptions:
        if options is None:
            return self.store.get_comic(comic_id).options
        if isinstance(options, GenerationOptions):
            return options
        try:
            return GenerationOptions.model_validate(options)
        except ValidationError as e:
            raise InvalidOptionsError(f"Invalid generation options for comic {comic_id}: {e}") from e

    def _mark_failed(self, comic_id: str):
        try:
            self.store.set_status(comic_id, ComicStatus.FAILED)
        except Exception as e:
            logger.error(f"[ComicPipeline] Could not mark comic {comic_id} as failed: {e}")

    def reference_from_source(self, comic_id: str, input_ref: str) -> str:
        reference = self.reference_extractor.from_url(input_ref, source=True)
        if reference:
            reference = self.store.set_character_reference(comic_id, reference).character_reference or ""
        else:
            logger.warning(f"[ComicPipeline] No character reference from source image of comic {comic_id}")
        return reference

    def generate_all_panels(self, comic_id: str, scripts: List[PanelScript], options: GenerationOptions,
                            character_reference: str = "") -> int:
        """Synthesizes and persists every panel in order. Returns the number persisted.

        Restarting this step redraws from panel 1; panels are upserted by number so
        no duplicates are left behind.
        """
        narrative = NarrativeContext(self.narrative_max_entries, self.narrative_max_chars)
        reference = character_reference or self.store.get_comic(comic_id).character_reference or ""
        lazy_pending = not reference

        for script in scripts:
            context_used = narrative.render()
            reference_used = reference
            result = self.synthesizer.generate(
                script,
                options,
                character_reference=reference_used or None,
                narrative=context_used,
            )

            if lazy_pending and not result.placeholder:
                lazy_pending = False
                extracted = self.reference_extractor.from_url(result.url)
                if extracted:
                    reference = self.store.set_character_reference(comic_id, extracted).character_reference or ""
                    logger.info(f"[ComicPipeline] Character reference taken from panel {script.panel_number}")
                else:
                    logger.warning(f"[ComicPipeline] Character reference extraction failed for comic {comic_id}")

            self.store.upsert_panel(Panel(
                comic_id=comic_id,
                panel_number=script.panel_number,
                image_url=result.url,
                caption=script.dialogue,
                scene_description=script.description,
                metadata={
                    "generationPrompt": result.prompt,
                    "visualElements": script.visual_elements,
                    "characterContext": reference_used,
                    "contextUsed": context_used,
                    "placeholder": result.placeholder,
                    "error": result.error,
                },
            ))
            narrative.append(f"Panel {script.panel_number}: {script.description}")
            logger.info(f"[ComicPipeline] Panel {script.panel_number}/{len(scripts)} stored")

        return len(scripts)

    # Single-panel jobs

    def regenerate_panel(self, comic_id: str, panel_id: str, include_context: bool = True,
                         art_style: Optional[str] = None) -> str:
        """Redraws one panel and returns its new image URL. Comic status is left alone."""

        @traceable(name="regenerate_panel_flow", project_name=self.project_name)
        def run_traced():
            steps = self.step_runner_factory()
            comic = self.store.get_comic(comic_id)
            panel = self.store.get_panel(comic_id, panel_id)
            previous_context, next_context = self._adjacent_context(comic_id, panel.panel_number)

            steps.run("snapshot-panel", self._snapshot, panel)

            script = PanelScript(
                panel_number=panel.panel_number,
                description=panel.scene_description or panel.metadata.get("generationPrompt", ""),
                dialogue=panel.caption,
                visual_elements=panel.metadata.get("visualElements") or comic.options.art_style,
            )
            adjacent = " ".join(c for c in (previous_context, next_context) if c)
            result = steps.run(
                "synthesize-panel",
                self.synthesizer.generate,
                script,
                comic.options,
                art_style=art_style,
                character_reference=comic.character_reference if include_context else None,
                adjacent_context=adjacent if include_context else "",
            )

            steps.run(
                "persist-panel",
                self.store.update_panel,
                comic_id,
                panel_id,
                image_url=result.url,
                regeneration_count=panel.regeneration_count + 1,
                metadata={
                    **panel.metadata,
                    "generationPrompt": result.prompt,
                    "characterContext": comic.character_reference if include_context else "",
                    "previousPanelContext": previous_context,
                    "nextPanelContext": next_context,
                    "placeholder": result.placeholder,
                    "error": result.error,
                    "regeneratedAt": utcnow().isoformat(),
                },
            )
            return result.url

        logger.info(f"--- REGENERATING PANEL: {panel_id} in comic {comic_id} ---")
        with self.locks.hold(comic_id):
            return run_traced()

    def _adjacent_context(self, comic_id: str, panel_number: int):
        siblings = {p.panel_number: p for p in self.store.list_panels(comic_id)}
        previous_panel = siblings.get(panel_number - 1)
        next_panel = siblings.get(panel_number + 1)
        previous_context = f"Previous panel: {previous_panel.scene_description}" if previous_panel else ""
        next_context = f"Next panel: {next_panel.scene_description}" if next_panel else ""
        return previous_context, next_context

    def _snapshot(self, panel: Panel) -> PanelHistoryEntry:
        history = self.store.list_history(panel.comic_id, panel.id)
        version = history[0].version_number + 1 if history else 1
        return self.store.add_history(PanelHistoryEntry.snapshot(panel, version))

    def restore_panel_version(self, comic_id: str, panel_id: str, history_id: str) -> Panel:
        """Puts a history snapshot back on the panel. The current state is not saved first."""
        with self.locks.hold(comic_id):
            entry = self.store.get_history(comic_id, panel_id, history_id)
            logger.info(f"[ComicPipeline] Restoring panel {panel_id} to version {entry.version_number}")
            return self.store.update_panel(
                comic_id,
                panel_id,
                image_url=entry.image_url,
                caption=entry.caption,
                scene_description=entry.scene_description,
                speech_bubbles=entry.speech_bubbles,
                bubble_positions=entry.bubble_positions,
                detected_text_boxes=entry.detected_text_boxes,
                metadata=entry.metadata,
            )

    def detect_panel_text(self, comic_id: str, panel_id: str):
        if self.text_detector is None:
            raise RuntimeError("No text detector configured")
        with self.locks.hold(comic_id):
            panel = self.store.get_panel(comic_id, panel_id)
            boxes = self.text_detector.detect_text_boxes(panel.image_url)
            self.store.update_panel(comic_id, panel_id, detected_text_boxes=boxes)
            return boxes
