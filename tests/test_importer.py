"""Tests for import orchestration."""

import pytest

from storyport.core.cancellation import CancellationToken
from storyport.core.editor_tree import editor_tree_to_blocks
from storyport.core.importer import (
    detect_entities_for_drafts,
    draft_to_document,
    import_story,
    root_order_offset,
)
from storyport.core.models import (
    DocumentDraft,
    ImportMode,
    ImportOptions,
    ImportSource,
    ImportStatus,
)
from storyport.formats.base import UnsupportedFormatError
from storyport.formatting.ir import Paragraph, paragraph
from storyport.llm.detector import DetectedEntity, DetectionResult, EntityOccurrence

SCENARIO = "CHAPTER ONE\n\nShe walked in.\n\nScene break.\n\nCHAPTER TWO\n\nLater that day."


def source(content: str, file_name: str = "manuscript.txt") -> ImportSource:
    return ImportSource(file_name=file_name, data=content.encode("utf-8"))


class StubDetector:
    """Detector returning a fixed result and recording the text it saw."""

    def __init__(self, result=None, error=None, cancel_on_call=False):
        self.result = result or DetectionResult()
        self.error = error
        self.cancel_on_call = cancel_on_call
        self.calls = []
        self.token = None

    def detect(self, text, existing_entities, entity_types, token=None):
        self.calls.append((text, list(existing_entities), entity_types))
        self.token = token
        if self.cancel_on_call:
            token.cancel()
        if self.error is not None:
            raise self.error
        return self.result


def occurrence(start, end, matched):
    return EntityOccurrence(start_offset=start, end_offset=end, matched_text=matched)


class TestImportStory:
    """Tests for import_story."""

    def test_scenario(self):
        result = import_story(source(SCENARIO), project_id="proj-1")

        assert result.status == ImportStatus.COMPLETED
        assert [(d.title, d.type, d.order_index) for d in result.documents] == [
            ("CHAPTER ONE", "chapter", 0),
            ("CHAPTER TWO", "chapter", 1),
        ]
        for doc in result.documents:
            blocks = editor_tree_to_blocks(doc.content)
            assert len([b for b in blocks if isinstance(b, Paragraph)]) == 1
            assert doc.project_id == "proj-1"
            assert doc.parent_id is None
        assert result.documents[0].word_count == 3

    def test_prose_line_stays_in_its_chapter(self):
        text = "Chapter 1\n\nShe waited.\n\nPart of me wanted to run.\n\nShe stayed."
        result = import_story(source(text))

        assert [(d.type, d.title) for d in result.documents] == [("chapter", "Chapter 1")]

    def test_markdown_scenes(self):
        text = "# One\n\nIntro.\n\n## Scene A\n\nText a.\n\n# Two\n"
        result = import_story(source(text, "book.md"))

        one, scene, two = result.documents
        assert scene.type == "scene"
        assert scene.parent_id == one.id
        assert two.order_index == 1

    def test_no_headings_uses_file_name(self):
        result = import_story(source("Just one paragraph.", "notes/my draft.txt"))
        assert [d.title for d in result.documents] == ["my draft"]

    def test_path_source(self, tmp_path):
        path = tmp_path / "story.md"
        path.write_text("# Only\n\nBody.\n", encoding="utf-8")

        result = import_story(path)

        assert [d.title for d in result.documents] == ["Only"]

    def test_explicit_format_overrides_extension(self):
        result = import_story(source("# Heading\n", "file.txt"), ImportOptions(format="markdown"))
        assert result.documents[0].title == "Heading"

    def test_unsupported_format_fails_before_reading(self):
        with pytest.raises(UnsupportedFormatError):
            import_story(source("x", "image.png"))

    def test_pdf_cannot_be_imported(self):
        with pytest.raises(UnsupportedFormatError):
            import_story(ImportSource(file_name="book.pdf", data=b"%PDF-1.4"))

    def test_append_offsets_root_order(self, documents):
        result = import_story(source(SCENARIO), existing_documents=documents)
        assert [d.order_index for d in result.documents] == [2, 3]

    def test_replace_starts_at_zero(self, documents):
        options = ImportOptions(mode=ImportMode.REPLACE)
        result = import_story(source(SCENARIO), options, existing_documents=documents)

        assert [d.order_index for d in result.documents] == [0, 1]

    def test_progress_phases(self):
        seen = []
        import_story(source(SCENARIO), on_progress=seen.append)

        assert [(p.phase, p.percent) for p in seen] == [
            ("read", 5),
            ("read", 10),
            ("parse", 25),
            ("structure", 50),
            ("convert", 65),
            ("done", 100),
        ]


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_pre_cancelled_token(self):
        token = CancellationToken()
        token.cancel()
        seen = []

        result = import_story(source(SCENARIO), token=token, on_progress=seen.append)

        assert result.status == ImportStatus.CANCELLED
        assert result.cancelled
        assert result.documents == []
        assert result.entities_created == [] and result.entities_updated == []
        assert seen == []

    def test_cancel_during_progress(self):
        token = CancellationToken()

        def cancel_at_structure(progress):
            if progress.phase == "structure":
                token.cancel()

        result = import_story(source(SCENARIO), token=token, on_progress=cancel_at_structure)

        assert result.cancelled
        assert result.documents == []

    def test_cancelled_results_are_independent(self):
        token = CancellationToken()
        token.cancel()

        first = import_story(source(SCENARIO), token=token)
        first.documents.append("mutated")
        second = import_story(source(SCENARIO), token=token)

        assert second.documents == []


class TestEntityDetection:
    """Tests for entity detection during import."""

    def test_detection_with_llm(self, mock_llm_client, entities):
        options = ImportOptions(detect_entities=True, api_key="sk-test")
        result = import_story(
            source("# Chapter One\n\nElara met Corin at the gate.\n", "book.md"),
            options,
            existing_entities=entities,
            project_id="proj-1",
        )

        assert [e.name for e in result.entities_created] == ["Corin"]
        corin = result.entities_created[0]
        assert corin.project_id == "proj-1"
        assert corin.properties == {"role": "guide"}
        assert corin.id not in {e.id for e in entities}

        assert [e.id for e in result.entities_updated] == ["ent-elara"]
        assert result.entities_updated[0].aliases == ["The Archivist", "Lady Elara"]
        assert mock_llm_client.call_args.kwargs["api_key"] == "sk-test"

    def test_detection_skipped_without_key(self, mock_llm_client):
        options = ImportOptions(detect_entities=True)
        result = import_story(source(SCENARIO), options)

        mock_llm_client.assert_not_called()
        assert result.entities_created == []

    def test_detection_uses_configured_key(self, mock_llm_client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        options = ImportOptions(detect_entities=True)

        import_story(source("Elara met Corin at the gate."), options)

        mock_llm_client.assert_called_once()

    def test_detection_off_by_default(self, mock_llm_client):
        import_story(source(SCENARIO), ImportOptions(api_key="sk-test"))
        mock_llm_client.assert_not_called()

    def test_detection_failure_keeps_documents(self):
        detector = StubDetector(error=RuntimeError("model unavailable"))
        options = ImportOptions(detect_entities=True)

        result = import_story(source(SCENARIO), options, detector=detector)

        assert result.status == ImportStatus.COMPLETED
        assert len(result.documents) == 2
        assert result.entities_created == []
        assert len(detector.calls) == 1

    def test_detection_progress_phase(self):
        seen = []
        options = ImportOptions(detect_entities=True)
        import_story(source(SCENARIO), options, detector=StubDetector(), on_progress=seen.append)

        assert ("entity-detect", 80) in [(p.phase, p.percent) for p in seen]

    def test_detector_receives_the_token(self):
        token = CancellationToken()
        detector = StubDetector()

        import_story(
            source(SCENARIO), ImportOptions(detect_entities=True), token=token, detector=detector
        )

        assert detector.token is token

    def test_cancel_during_detection(self):
        token = CancellationToken()
        detector = StubDetector(cancel_on_call=True)

        result = import_story(
            source(SCENARIO), ImportOptions(detect_entities=True), token=token, detector=detector
        )

        assert result.cancelled
        assert result.entities_created == []

    def test_failure_after_cancel_reports_cancelled(self):
        token = CancellationToken()
        detector = StubDetector(error=RuntimeError("Rate limited"), cancel_on_call=True)

        result = import_story(
            source(SCENARIO), ImportOptions(detect_entities=True), token=token, detector=detector
        )

        assert result.status == ImportStatus.CANCELLED


class TestDetectEntitiesForDrafts:
    """Tests for turning detection results into entity upserts."""

    def drafts(self):
        return [
            DocumentDraft(id="d1", title="One", type="chapter", blocks=[paragraph("Elara rode.")]),
            DocumentDraft(id="d2", title="Two", type="chapter", blocks=[paragraph("Corin waited.")]),
        ]

    def test_combined_text(self):
        detector = StubDetector()
        detect_entities_for_drafts(self.drafts(), [], ["character"], "p", detector)

        text, _, types = detector.calls[0]
        assert text == "Elara rode.\n\nCorin waited.\n\n"
        assert types == ["character"]

    def test_new_entities_are_deduplicated(self):
        result = DetectionResult(
            entities=[
                DetectedEntity(name="Corin", type="character", occurrences=[occurrence(13, 18, "Corin")]),
                DetectedEntity(
                    name="corin",
                    type="character",
                    occurrences=[occurrence(13, 18, "Corin")],
                    suggested_aliases=["The Guide"],
                ),
                DetectedEntity(name="Corin", type="location", occurrences=[occurrence(13, 18, "Corin")]),
            ]
        )
        created, updated = detect_entities_for_drafts(
            self.drafts(), [], ["character", "location"], "p", StubDetector(result)
        )

        assert [(e.name, e.type) for e in created] == [("Corin", "character"), ("Corin", "location")]
        assert created[0].aliases == ["The Guide"]
        assert updated == []

    def test_matched_name_variant_becomes_alias(self, entities):
        result = DetectionResult(
            entities=[
                DetectedEntity(
                    name="Elara Vey",
                    type="character",
                    occurrences=[occurrence(0, 5, "Elara")],
                    suggested_aliases=["The Archivist"],
                    matched_existing_id="ent-elara",
                )
            ]
        )
        created, updated = detect_entities_for_drafts(
            self.drafts(), entities, ["character"], "p", StubDetector(result)
        )

        assert created == []
        assert updated[0].aliases == ["The Archivist", "Elara Vey"]
        assert entities[0].aliases == ["The Archivist"]

    def test_empty_drafts_skip_detection(self):
        detector = StubDetector()
        drafts = [DocumentDraft(id="d", title="Empty", type="chapter")]

        assert detect_entities_for_drafts(drafts, [], [], "p", detector) == ([], [])
        assert detector.calls == []


class TestHelpers:
    def test_root_order_offset(self, documents):
        assert root_order_offset(documents) == 2
        assert root_order_offset([]) == 0

    def test_draft_to_document(self):
        draft = DocumentDraft(
            id="s", title="Scene", type="scene", parent_id="c", order_index=1,
            blocks=[paragraph("three little words")],
        )
        doc = draft_to_document(draft, "p", root_offset=5)

        assert doc.order_index == 1
        assert doc.word_count == 3
        assert doc.content["type"] == "doc"
