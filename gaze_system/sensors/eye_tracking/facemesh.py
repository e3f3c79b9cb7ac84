"""
FaceMesh Gaze Engine
Default gaze engine: MediaPipe face landmarks on frames from the shared
capture sink, mapped linearly from iris position to viewport pixels.
"""

import asyncio
import dataclasses
import logging
import os
import threading
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from .capture import ensure_sink, open_camera_stream, stop_stream_after
from .config import EyeTrackingConfig
from .engine import GazeListener
from .errors import EngineUnavailableError
from .utils import extract_features, face_center, feedback_box, features_to_viewport, point_in_box

logger = logging.getLogger(__name__)

LANDMARKER_MODEL_FILE = 'face_landmarker.task'
IN_BOX_CONFIDENCE = 0.8
OUT_OF_BOX_CONFIDENCE = 0.4


class FaceMeshGazeEngine:
    """
    Gaze engine running MediaPipe in a background thread.

    Reads the latest frame from the capture sink named in params['sink_id'];
    if nothing is attached at begin() it opens its own camera stream with
    the configured constraints.
    """

    name = 'facemesh'

    def __init__(self, config: Optional[EyeTrackingConfig] = None):
        self.config = config or EyeTrackingConfig()
        self.params: dict = {}

        self._listener: Optional[GazeListener] = None
        self._constraints = self.config.camera_constraints()
        self._show_points = False
        self._show_box = False
        self._viewer_size = (self.config.preview_max_width, self.config.preview_max_height)

        # MediaPipe
        self._backend_kind: Optional[str] = None
        self._backend = None
        self._last_video_ms = 0

        # Camera
        self._sink = None
        self._own_stream = None

        # Threading
        self.is_running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._paused = threading.Event()

        self._preview_lock = threading.Lock()
        self._preview: Optional[np.ndarray] = None
        self.frame_count = 0

    # ------------------------------------------------------------------
    # Adapter surface
    # ------------------------------------------------------------------

    def set_gaze_listener(self, listener: Optional[GazeListener]) -> 'FaceMeshGazeEngine':
        self._listener = listener
        return self

    def set_camera_constraints(self, constraints: dict) -> 'FaceMeshGazeEngine':
        self._constraints = constraints
        return self

    def show_prediction_points(self, show: bool):
        self._show_points = bool(show)

    def show_face_feedback_box(self, show: bool):
        self._show_box = bool(show)

    def set_video_viewer_size(self, width: int, height: int) -> 'FaceMeshGazeEngine':
        self._viewer_size = (max(1, int(width)), max(1, int(height)))
        return self

    async def begin(self):
        """
        Attach to the capture sink, load the landmark model and start the thread.

        Raises:
            CaptureError if no camera could be opened.
            EngineUnavailableError if no MediaPipe landmark backend is usable.
        """
        if self.is_running:
            return

        sink_config = dataclasses.replace(
            self.config, sink_id=self.params.get('sink_id', self.config.sink_id)
        )
        self._sink = ensure_sink(sink_config)
        if self._sink.source is None:
            self._own_stream = await open_camera_stream(self._constraints, self.config.camera_index)
            self._sink.attach(self._own_stream)
        await self._sink.play()

        try:
            self._backend_kind, self._backend = await asyncio.to_thread(self._open_backend)
        except Exception:
            await self._release_own_stream()
            raise

        self._stop_event.clear()
        self._paused.clear()
        self.is_running = True
        self._thread = threading.Thread(
            target=self._processing_loop,
            name="FaceMeshGaze-Thread",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"✓ FaceMesh gaze engine started ({self._backend_kind})")

    def pause(self):
        self._paused.set()

    def resume(self):
        self._paused.clear()

    async def end(self):
        if not self.is_running:
            return

        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            await asyncio.to_thread(self._thread.join, 5)
        self._thread = None

        if self._backend is not None:
            try:
                self._backend.close()
            except Exception as e:
                logger.warning(f"Error closing landmark backend: {e}")
            self._backend = None

        await self._release_own_stream()
        self.is_running = False
        logger.info(f"✓ FaceMesh gaze engine stopped after {self.frame_count} frames")

    def preview_frame(self) -> Optional[np.ndarray]:
        """Latest annotated preview at the viewer size, if drawing is enabled"""
        with self._preview_lock:
            return self._preview

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    async def _release_own_stream(self):
        stream, self._own_stream = self._own_stream, None
        if stream is None:
            return
        reader = None
        if self._sink is not None and self._sink.source is stream:
            reader = self._sink.detach()
        await asyncio.to_thread(stop_stream_after, stream, reader)

    def _open_backend(self):
        import mediapipe as mp

        model_path = self._landmarker_model_path()
        if model_path is not None:
            options = mp.tasks.vision.FaceLandmarkerOptions(
                base_options=mp.tasks.BaseOptions(model_asset_path=model_path),
                running_mode=mp.tasks.vision.RunningMode.VIDEO,
                num_faces=self.config.mp_max_num_faces,
                min_face_detection_confidence=self.config.mp_min_detection_confidence,
                min_tracking_confidence=self.config.mp_min_tracking_confidence,
            )
            return 'task_landmarker', mp.tasks.vision.FaceLandmarker.create_from_options(options)

        solutions = getattr(mp, 'solutions', None)
        if solutions is None or not hasattr(solutions, 'face_mesh'):
            raise EngineUnavailableError(
                "MediaPipe FaceMesh is not available and no face landmarker model path was given"
            )
        return 'face_mesh', solutions.face_mesh.FaceMesh(
            max_num_faces=self.config.mp_max_num_faces,
            refine_landmarks=self.config.mp_refine_landmarks,
            min_detection_confidence=self.config.mp_min_detection_confidence,
            min_tracking_confidence=self.config.mp_min_tracking_confidence,
        )

    def _landmarker_model_path(self) -> Optional[str]:
        base = self.params.get('face_mesh_solution_path') or self.config.model_asset_base
        if not base:
            return None
        path = os.path.join(base, LANDMARKER_MODEL_FILE) if os.path.isdir(base) else base
        if not os.path.isfile(path):
            raise EngineUnavailableError(f"Face landmarker model not found at {path}")
        return path

    def _landmarks(self, rgb: np.ndarray, timestamp_ms: int):
        if self._backend_kind == 'face_mesh':
            results = self._backend.process(rgb)
            if results.multi_face_landmarks:
                return results.multi_face_landmarks[0].landmark
            return None

        import mediapipe as mp
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        result = self._backend.detect_for_video(image, timestamp_ms)
        return result.face_landmarks[0] if result.face_landmarks else None

    def _video_timestamp_ms(self) -> int:
        """Strictly increasing frame time for detect_for_video, immune to wall clock jumps"""
        now = int(time.monotonic() * 1000)
        if now <= self._last_video_ms:
            now = self._last_video_ms + 1
        self._last_video_ms = now
        return now

    def _viewport(self) -> Tuple[int, int]:
        viewport = self.params.get('viewport') or self.config.viewport
        return int(viewport[0]), int(viewport[1])

    def _processing_loop(self):
        logger.info("FaceMesh processing loop started")
        last_frame = None

        while not self._stop_event.is_set():
            try:
                if self._paused.is_set():
                    time.sleep(0.05)
                    continue

                frame = self._sink.latest_frame() if self._sink is not None else None
                if frame is None or frame is last_frame:
                    time.sleep(0.005)
                    continue
                last_frame = frame

                timestamp_ms = int(time.time() * 1000)
                rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                landmarks = self._landmarks(rgb, self._video_timestamp_ms())
                self.frame_count += 1

                if landmarks is None:
                    self._emit(None, timestamp_ms)
                    continue

                h, w = frame.shape[:2]
                features = extract_features(landmarks, w, h, self.config)
                x, y = features_to_viewport(features, self._viewport(), self.config)

                box = feedback_box(w, h, float(self.params.get('face_feedback_box_ratio', 1.0)))
                cx, cy = face_center(landmarks)
                in_box = point_in_box(cx * w, cy * h, box)
                confidence = IN_BOX_CONFIDENCE if in_box else OUT_OF_BOX_CONFIDENCE

                self._emit({'x': x, 'y': y, 'confidence': confidence}, timestamp_ms)

                if self._show_points or self._show_box:
                    self._draw_preview(frame, (x, y), box)

            except Exception as e:
                logger.error(f"Error in gaze processing loop: {e}", exc_info=True)
                time.sleep(0.1)

        logger.info("FaceMesh processing loop stopped")

    def _emit(self, data: Optional[dict], timestamp_ms: int):
        listener = self._listener
        if listener is not None:
            listener(data, timestamp_ms)

    def _draw_preview(self, frame: np.ndarray, gaze: Tuple[float, float], box):
        canvas = frame.copy()
        if self._show_box:
            bx, by, bw, bh = box
            cv2.rectangle(canvas, (bx, by), (bx + bw, by + bh), (0, 200, 0), 2)

        canvas = cv2.resize(canvas, self._viewer_size)
        if self._show_points:
            vw, vh = self._viewport()
            px = int(gaze[0] / max(vw, 1) * self._viewer_size[0])
            py = int(gaze[1] / max(vh, 1) * self._viewer_size[1])
            cv2.circle(canvas, (px, py), 4, (0, 0, 255), -1)

        with self._preview_lock:
            self._preview = canvas

    def __repr__(self):
        status = "running" if self.is_running else "stopped"
        return f"<FaceMeshGazeEngine(status={status}, frames={self.frame_count})>"
