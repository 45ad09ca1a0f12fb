"""
Integration tests for the clip assembly pipeline (FFmpeg and blob store faked).
"""

import asyncio
import os

import pytest

from clipforge.services.clip_assembly_pipeline import (
    BatchRenderRequest,
    BatchState,
    ClipAssemblyPipeline,
    ClipRenderRequest,
    ClipStatus,
    FailureStage,
    OwnerContext,
)
from clipforge.services.filter_graph import RenderOptions
from clipforge.services.segment_filter import SegmentSpec
from clipforge.services.video_downloader import SourceAcquirer


def _clip(clip_id, *bounds, **options):
    segments = [
        SegmentSpec(label=f"{clip_id}-{i}", start_time=start, end_time=end)
        for i, (start, end) in enumerate(bounds)
    ]
    return ClipRenderRequest(id=clip_id, segments=segments, options=RenderOptions(**options))


def _batch(source_ref, *clips, **kwargs):
    return BatchRenderRequest(
        source_ref=source_ref,
        clip_requests=list(clips),
        owner_context=OwnerContext(project_id="proj-1", user_id="user-1"),
        batch_id=kwargs.pop("batch_id", "batch-1"),
        **kwargs,
    )


@pytest.fixture
def pipeline(settings, fake_renderer, fake_blob_store):
    return ClipAssemblyPipeline(
        blob_store=fake_blob_store,
        renderer=fake_renderer,
        acquirer=SourceAcquirer(blob_store=fake_blob_store, settings=settings),
        settings=settings,
    )


class TestRenderBatch:
    """Tests for ClipAssemblyPipeline.render_batch."""

    def test_single_segment_clip(self, pipeline, source_video, fake_blob_store):
        """Test one 5s segment renders a completed 5s clip."""
        request = _batch(source_video, _clip("clip-a", ("00:00:10,000", "00:00:15,000"), quality="medium"))

        result = asyncio.run(pipeline.render_batch(request))

        clip = result.results[0]
        assert clip.status == ClipStatus.COMPLETED
        assert clip.duration_seconds == pytest.approx(5.0)
        assert clip.artifact_key == "clips/proj-1/clip-a.mp4"
        assert clip.artifact_ref == "https://blobs.test/clips/proj-1/clip-a.mp4"
        assert clip.file_size_bytes == 2048
        assert [key for _, key in fake_blob_store.puts] == ["clips/proj-1/clip-a.mp4"]

    def test_invalid_clip_does_not_abort_batch(self, pipeline, source_video):
        """Test a clip with end <= start fails alone while its neighbours complete."""
        request = _batch(
            source_video,
            _clip("one", (0, 10)),
            _clip("two", ("00:00:30,000", "00:00:20,000")),
            _clip("three", (40, 50)),
        )

        result = asyncio.run(pipeline.render_batch(request))

        assert [r.status for r in result.results] == [
            ClipStatus.COMPLETED,
            ClipStatus.FAILED,
            ClipStatus.COMPLETED,
        ]
        assert result.results[1].stage == FailureStage.VALIDATE
        assert "non-positive duration" in result.results[1].error
        assert result.success_count == 2
        assert result.failure_count == 1

    def test_overlong_only_segment_degrades_without_rendering(self, pipeline, source_video, fake_renderer):
        """Test a lone 95s segment is dropped and the renderer is never invoked."""
        request = _batch(source_video, _clip("long", (0, 95)))

        result = asyncio.run(pipeline.render_batch(request))

        clip = result.results[0]
        assert clip.status == ClipStatus.FAILED
        assert clip.duration_seconds == 0
        assert "exceeds 60s limit" in clip.error
        assert len(clip.dropped_segments) == 1
        assert fake_renderer.calls == []

    def test_partial_drop_still_renders(self, pipeline, source_video, fake_renderer):
        """Test surviving segments render and the drop is reported."""
        request = _batch(source_video, _clip("mixed", (0, 95), (100, 110), (200, 220)))

        clip = asyncio.run(pipeline.render_batch(request)).results[0]

        assert clip.status == ClipStatus.COMPLETED
        assert clip.duration_seconds == pytest.approx(30.0)
        assert [d.segment.label for d in clip.dropped_segments] == ["mixed-0"]
        assert len(fake_renderer.calls) == 1

    def test_batch_max_duration_override(self, pipeline, source_video):
        """Test a per-batch limit replaces the configured one."""
        request = _batch(source_video, _clip("a", (0, 45)), max_segment_duration=30)

        clip = asyncio.run(pipeline.render_batch(request)).results[0]

        assert clip.status == ClipStatus.FAILED
        assert "exceeds 30s limit" in clip.error

    def test_results_follow_request_order(self, settings, source_video, fake_renderer, fake_blob_store):
        """Test results line up with requests even with parallel renders."""
        settings.max_render_workers = 3
        pipeline = ClipAssemblyPipeline(
            blob_store=fake_blob_store,
            renderer=fake_renderer,
            acquirer=SourceAcquirer(settings=settings),
            settings=settings,
        )
        ids = [f"clip-{i}" for i in range(6)]
        request = _batch(source_video, *[_clip(clip_id, (i, i + 5)) for i, clip_id in enumerate(ids)])

        result = asyncio.run(pipeline.render_batch(request))

        assert [r.id for r in result.results] == ids
        assert result.total_requested == result.success_count + result.failure_count == 6

    def test_render_failure_is_isolated(self, settings, source_video, fake_blob_store, renderer_factory):
        """Test an encoder failure is recorded with the render stage."""
        pipeline = ClipAssemblyPipeline(
            blob_store=fake_blob_store,
            renderer=renderer_factory(fail_for={"bad"}),
            acquirer=SourceAcquirer(settings=settings),
            settings=settings,
        )
        request = _batch(source_video, _clip("good", (0, 5)), _clip("bad", (5, 10)))

        result = asyncio.run(pipeline.render_batch(request))

        assert result.results[0].status == ClipStatus.COMPLETED
        assert result.results[1].status == ClipStatus.FAILED
        assert result.results[1].stage == FailureStage.RENDER
        assert "simulated" in result.results[1].error

    def test_publish_failure_is_isolated(self, pipeline, source_video, fake_blob_store, settings):
        """Test a blob store outage fails clips at the publish stage and cleans up."""
        fake_blob_store.fail = True
        request = _batch(source_video, _clip("a", (0, 5)), _clip("b", (5, 10)))

        result = asyncio.run(pipeline.render_batch(request))

        assert [r.stage for r in result.results] == [FailureStage.PUBLISH, FailureStage.PUBLISH]
        assert all(r.artifact_ref is None for r in result.results)
        assert not os.path.exists(os.path.join(settings.temp_directory, "batch-1"))

    def test_build_failure_is_isolated(self, pipeline, source_video):
        """Test bad render options fail the clip at the build stage."""
        request = _batch(source_video, _clip("odd", (0, 5), width=1281, height=720))

        clip = asyncio.run(pipeline.render_batch(request)).results[0]

        assert clip.status == ClipStatus.FAILED
        assert clip.stage == FailureStage.BUILD

    def test_malformed_timestamp_fails_clip(self, pipeline, source_video):
        """Test an unparseable timestamp fails the whole clip at validation."""
        request = _batch(source_video, _clip("bad-ts", ("00:00:10", "00:00:20,000")))

        clip = asyncio.run(pipeline.render_batch(request)).results[0]

        assert clip.status == ClipStatus.FAILED
        assert clip.stage == FailureStage.VALIDATE

    def test_source_failure_fails_every_clip(self, pipeline, tmp_path, fake_renderer):
        """Test an unreadable source fails all clips with the same acquire error."""
        request = _batch(str(tmp_path / "missing.mp4"), _clip("a", (0, 5)), _clip("b", (5, 10)))

        result = asyncio.run(pipeline.render_batch(request))

        assert [r.stage for r in result.results] == [FailureStage.ACQUIRE, FailureStage.ACQUIRE]
        assert result.results[0].error == result.results[1].error
        assert result.failure_count == 2
        assert fake_renderer.calls == []

    def test_malformed_source_url_fails_every_clip(self, pipeline, fake_renderer):
        """Test a URL that cannot be parsed is an acquire failure, not a crash."""
        request = _batch("http://[::1", _clip("a", (0, 5)), _clip("b", (5, 10)))

        result = asyncio.run(pipeline.render_batch(request))

        assert [r.stage for r in result.results] == [FailureStage.ACQUIRE, FailureStage.ACQUIRE]
        assert "Malformed source reference" in result.results[0].error
        assert fake_renderer.calls == []

    def test_unexpected_acquire_error_fails_every_clip(
        self, settings, fake_renderer, fake_blob_store, mocker
    ):
        """Test any error raised while acquiring is recorded against the acquire stage."""
        acquirer = mocker.MagicMock()
        acquirer.acquire = mocker.AsyncMock(side_effect=RuntimeError("disk gone"))
        pipeline = ClipAssemblyPipeline(
            blob_store=fake_blob_store,
            renderer=fake_renderer,
            acquirer=acquirer,
            settings=settings,
        )

        result = asyncio.run(pipeline.render_batch(_batch("/data/talk.mp4", _clip("a", (0, 5)))))

        assert result.results[0].stage == FailureStage.ACQUIRE
        assert "disk gone" in result.results[0].error
        acquirer.release.assert_not_called()

    def test_empty_batch(self, pipeline, source_video):
        """Test a batch with no clips completes with no results."""
        result = asyncio.run(pipeline.render_batch(_batch(source_video)))

        assert result.results == []
        assert result.total_requested == 0

    def test_work_dir_removed(self, pipeline, source_video, settings):
        """Test the batch work directory is gone after the batch."""
        asyncio.run(pipeline.render_batch(_batch(source_video, _clip("a", (0, 5)))))

        assert not os.path.exists(os.path.join(settings.temp_directory, "batch-1"))
        assert os.path.exists(source_video)


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_before_start(self, pipeline, source_video, fake_renderer):
        """Test a pre-set cancel event records every clip as cancelled."""
        event = asyncio.Event()
        event.set()
        request = _batch(source_video, _clip("a", (0, 5)), _clip("b", (5, 10)))

        result = asyncio.run(pipeline.render_batch(request, cancel_event=event))

        assert result.cancelled is True
        assert [r.stage for r in result.results] == [FailureStage.CANCELLED, FailureStage.CANCELLED]
        assert fake_renderer.calls == []

    def test_cancel_between_clips(self, settings, source_video, fake_blob_store, fake_renderer):
        """Test clips not yet started are cancelled while finished ones are kept."""
        event = asyncio.Event()

        class CancellingRenderer:
            async def render(self, source_path, graph, output_path, progress_callback=None):
                result = await fake_renderer.render(source_path, graph, output_path, progress_callback)
                event.set()
                return result

        pipeline = ClipAssemblyPipeline(
            blob_store=fake_blob_store,
            renderer=CancellingRenderer(),
            acquirer=SourceAcquirer(settings=settings),
            settings=settings,
        )
        request = _batch(source_video, _clip("a", (0, 5)), _clip("b", (5, 10)), _clip("c", (10, 15)))

        result = asyncio.run(pipeline.render_batch(request, cancel_event=event))

        assert result.cancelled is True
        assert result.results[0].status == ClipStatus.COMPLETED
        assert [r.stage for r in result.results[1:]] == [FailureStage.CANCELLED, FailureStage.CANCELLED]
        assert len(result.results) == 3

    def test_task_cancel_keeps_finished_clips(self, settings, source_video, fake_blob_store, fake_renderer):
        """Test cancelling the batch task returns finished clips and marks the rest cancelled."""
        settings.max_render_workers = 1

        class BlockingRenderer:
            def __init__(self):
                self.started = asyncio.Event()

            async def render(self, source_path, graph, output_path, progress_callback=None):
                if os.path.basename(output_path).startswith("b_"):
                    self.started.set()
                    await asyncio.Event().wait()
                return await fake_renderer.render(source_path, graph, output_path, progress_callback)

        async def cancel_mid_batch():
            renderer = BlockingRenderer()
            pipeline = ClipAssemblyPipeline(
                blob_store=fake_blob_store,
                renderer=renderer,
                acquirer=SourceAcquirer(settings=settings),
                settings=settings,
            )
            request = _batch(source_video, _clip("a", (0, 5)), _clip("b", (5, 10)), _clip("c", (10, 15)))
            task = asyncio.ensure_future(pipeline.render_batch(request))
            await renderer.started.wait()
            task.cancel()
            return await task

        result = asyncio.run(cancel_mid_batch())

        assert result.cancelled is True
        assert result.results[0].status == ClipStatus.COMPLETED
        assert result.results[0].artifact_key == "clips/proj-1/a.mp4"
        assert [r.stage for r in result.results[1:]] == [FailureStage.CANCELLED, FailureStage.CANCELLED]
        assert not os.path.exists(os.path.join(settings.temp_directory, "batch-1"))

class TestWorkDirSafety:
    """Tests that batch scratch space never reaches outside its own directory."""

    @pytest.fixture
    def neighbour_file(self, settings):
        neighbour = os.path.join(settings.temp_directory, "other-batch")
        os.makedirs(neighbour)
        path = os.path.join(neighbour, "source_x.mp4")
        with open(path, "wb") as f:
            f.write(b"\x00")
        return path

    @pytest.mark.parametrize("batch_id", ["", ".", "..", "../other-batch", "a/b"])
    def test_unsafe_batch_id_keeps_other_batches(self, pipeline, source_video, neighbour_file, batch_id):
        """Test an id that is not a plain name gets its own generated work directory."""
        request = _batch(source_video, _clip("a", (0, 5)), batch_id=batch_id)

        result = asyncio.run(pipeline.render_batch(request))

        assert result.success_count == 1
        assert os.path.exists(neighbour_file)
        assert os.listdir(os.path.dirname(os.path.dirname(neighbour_file))) == ["other-batch"]

    def test_unsafe_clip_id_fails_validation(self, pipeline, source_video, fake_renderer, fake_blob_store):
        """Test a clip id with path separators is rejected before rendering."""
        request = _batch(source_video, _clip("../evil", (0, 5)), _clip("fine", (5, 10)))

        result = asyncio.run(pipeline.render_batch(request))

        assert result.results[0].status == ClipStatus.FAILED
        assert result.results[0].stage == FailureStage.VALIDATE
        assert "must be 1-64 letters" in result.results[0].error
        assert result.results[1].status == ClipStatus.COMPLETED
        assert len(fake_renderer.calls) == 1
        assert [key for _, key in fake_blob_store.puts] == ["clips/proj-1/fine.mp4"]

    def test_removal_outside_temp_root_is_refused(self, pipeline, tmp_path):
        """Test only direct children of the temp directory are ever removed."""
        outside = tmp_path / "keep"
        outside.mkdir()

        warnings = pipeline._remove_work_dir(str(outside))

        assert outside.exists()
        assert "outside" in warnings[0]



class TestProgress:
    """Tests for batch progress reporting."""

    def test_progress_sequence(self, settings, source_video, fake_renderer, fake_blob_store):
        """Test states advance from acquisition through rendering to done."""
        updates = []
        pipeline = ClipAssemblyPipeline(
            blob_store=fake_blob_store,
            renderer=fake_renderer,
            acquirer=SourceAcquirer(settings=settings),
            settings=settings,
            progress_callback=updates.append,
        )
        request = _batch(source_video, _clip("a", (0, 5)), _clip("b", (5, 10)))

        asyncio.run(pipeline.render_batch(request))

        assert updates[0].state == BatchState.ACQUIRING_SOURCE
        assert updates[-1].state == BatchState.DONE
        assert updates[-1].percent == 100.0
        assert {u.state for u in updates[1:-1]} == {BatchState.RENDERING}
        assert max(u.clips_completed for u in updates) == 2

    def test_failing_callback_does_not_break_batch(self, settings, source_video, fake_renderer, fake_blob_store):
        """Test progress callback errors are logged and ignored."""
        def broken(progress):
            raise RuntimeError("listener gone")

        pipeline = ClipAssemblyPipeline(
            blob_store=fake_blob_store,
            renderer=fake_renderer,
            acquirer=SourceAcquirer(settings=settings),
            settings=settings,
            progress_callback=broken,
        )

        result = asyncio.run(pipeline.render_batch(_batch(source_video, _clip("a", (0, 5)))))
        assert result.success_count == 1
