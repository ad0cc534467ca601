"""
Comic generation topology:

    mark_generating -> extract -> analyze -> script -> [source_reference] -> generate_panels -> finalize

Every node does its work through the run's DurableStep, so a transient failure
retries that node only. `source_reference` runs for image input when the comic has
no character reference yet. When it yields nothing, the first drawn panel supplies the
reference as it does for every other input.
"""

import logging
import time
from typing import TYPE_CHECKING

from langgraph.graph import END, StateGraph

from .models import ComicStatus, InputType, PipelineState, utcnow
from .steps import DurableStep

if TYPE_CHECKING:
    from .jobs import ComicPipeline

logger = logging.getLogger(__name__)


def create_generation_graph(pipeline: "ComicPipeline", steps: DurableStep):
    store = pipeline.store

    def mark_generating(state: PipelineState):
        logger.info(f"--- GENERATING COMIC: {state['comic_id']} ---")
        steps.run("update-status-generating", store.set_status, state["comic_id"], ComicStatus.GENERATING)
        options = steps.run("resolve-options", pipeline.resolve_options, state["comic_id"], state.get("options"))
        return {"current_step": "extract", "started_at": time.time(), "options": options}

    def extract(state: PipelineState):
        content = steps.run("extract-content", pipeline.extractor.extract, state["input_ref"], state["input_type"])
        logger.info(f"[extract] {len(content)} characters extracted")
        return {"current_step": "analyze", "content": content}

    def analyze(state: PipelineState):
        analysis = steps.run(
            "analyze-content", pipeline.analyzer.analyze, state["content"], state["options"].subject
        )
        return {"current_step": "script", "analysis": analysis}

    def script(state: PipelineState):
        scripts = steps.run("generate-scripts", pipeline.script_generator.generate, state["analysis"], state["options"])
        # Pollers read the expected total from here while panels are still being drawn.
        steps.run("record-panel-count", store.merge_metadata, state["comic_id"], panelCount=len(scripts))
        return {"current_step": "reference", "scripts": scripts, "panel_count": len(scripts)}

    def source_reference(state: PipelineState):
        reference = steps.run(
            "extract-source-reference",
            pipeline.reference_from_source,
            state["comic_id"],
            state["input_ref"],
        )
        return {"current_step": "panels", "character_reference": reference}

    def generate_panels(state: PipelineState):
        count = steps.run(
            "generate-panels",
            pipeline.generate_all_panels,
            state["comic_id"],
            state["scripts"],
            state["options"],
            state.get("character_reference") or "",
        )
        return {"current_step": "finalize", "panel_count": count}

    def finalize(state: PipelineState):
        comic_id = state["comic_id"]
        elapsed = round(time.time() - state["started_at"], 2)

        def complete():
            store.merge_metadata(
                comic_id,
                panelCount=state["panel_count"],
                generationTime=elapsed,
                completedAt=utcnow().isoformat(),
            )
            return store.set_status(comic_id, ComicStatus.COMPLETED)

        steps.run("update-status-completed", complete)
        logger.info(f"--- COMIC {comic_id} COMPLETED: {state['panel_count']} panels in {elapsed}s ---")
        return {"current_step": "done"}

    def needs_source_reference(state: PipelineState):
        if InputType(state["input_type"]) == InputType.IMAGE and not store.get_comic(state["comic_id"]).character_reference:
            return "reference"
        return "panels"

    workflow = StateGraph(PipelineState)

    workflow.add_node("mark_generating", mark_generating)
    workflow.add_node("extract", extract)
    workflow.add_node("analyze", analyze)
    workflow.add_node("script", script)
    workflow.add_node("source_reference", source_reference)
    workflow.add_node("generate_panels", generate_panels)
    workflow.add_node("finalize", finalize)

    workflow.set_entry_point("mark_generating")
    workflow.add_edge("mark_generating", "extract")
    workflow.add_edge("extract", "analyze")
    workflow.add_edge("analyze", "script")
    workflow.add_conditional_edges(
        "script",
        needs_source_reference,
        {
            "reference": "source_reference",
            "panels": "generate_panels",
        },
    )
    workflow.add_edge("source_reference", "generate_panels")
    workflow.add_edge("generate_panels", "finalize")
    workflow.add_edge("finalize", END)

    return workflow.compile()
