"""Pygame UI shell for the CPT engine.

The shell only renders engine snapshots and forwards input:
- Space / left click -> respond
- Esc -> abort (or back)
- Enter -> start, or retake from the results screen

Deterministic timing/scoring/RNG/state lives in cpt_engine/* (core modules).
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pygame

from .clock import RealClock
from .cpt_core import SessionStatus, format_time
from .engine import CptEngine, build_cpt_engine
from .metrics import INSUFFICIENT_DATA, MetricsSnapshot
from .protocols import LARGE_SQUARE, PROTOCOLS, SHAPE_CPT, ProtocolConfig
from .results import session_result_from_engine

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 120

BG = (10, 10, 14)
FG = (235, 235, 245)
DIM = (160, 160, 175)
ACCENT = (255, 214, 90)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def update(self) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(self, surface: pygame.Surface) -> None:
        self._surface = surface
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the root screen; it handles its own quit.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if self._screens:
            self._screens[-1].handle_event(event)

    def update(self) -> None:
        if self._screens:
            self._screens[-1].update()

    def render(self) -> None:
        if self._screens:
            self._screens[-1].render(self._surface)


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._selected = (self._selected - 1) % len(self._items)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._selected = (self._selected + 1) % len(self._items)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            self._items[self._selected].action()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def update(self) -> None:
        return

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        surface.blit(self._title_font.render(self._title, True, FG), (40, 40))
        for idx, item in enumerate(self._items):
            color = ACCENT if idx == self._selected else DIM
            prefix = "> " if idx == self._selected else "  "
            surface.blit(self._item_font.render(prefix + item.label, True, color), (60, 120 + idx * 44))


def _instructions(config: ProtocolConfig) -> list[str]:
    lines = [config.title, ""]
    for idx, rule in enumerate(config.phase_rules):
        head = "" if len(config.phase_rules) == 1 else f"{config.phase_label(idx)}: "
        lines.append(f"{head}{rule.description}")
    lines += [
        "",
        f"Session length: up to {format_time(config.total_duration_ms)}",
        "Press Space (or click) as quickly as possible when required.",
        "",
        "Press Enter to start. Esc aborts.",
    ]
    return lines


def _results_lines(metrics: MetricsSnapshot, engine: CptEngine) -> list[str]:
    overall = metrics.overall
    interp = engine.interpretation()
    sd = overall.hit_rt.sd_ms
    sd_text = "n/a" if sd in (0.0, INSUFFICIENT_DATA) else f"{sd:.0f} ms"
    rt_text = "n/a" if overall.hit_rt.count == 0 else f"{overall.hit_rt.mean_ms:.0f} ms"
    lines = [
        "Results",
        "",
        f"Trials: {overall.trials}   Targets: {overall.targets}   Non-targets: {overall.non_targets}",
        f"Omissions: {overall.omissions} ({interp.omission_rate_pct:.1f}%)"
        f"   Commissions: {overall.commissions} ({interp.commission_rate_pct:.1f}%)",
        f"Hit RT: {rt_text}   SD: {sd_text}   Anticipatory: {overall.anticipatory}",
        f"Detectability: {interp.detectability:.2f}   Drift: {metrics.drift:.1f} ms/phase",
    ]
    if metrics.response_style is not None:
        lines.append(f"Response style: {metrics.response_style}")
    lines += ["", f"Risk: {interp.risk_band.value} (score {interp.risk_score})"]
    lines += [f"- {text}" for text in interp.indicators]
    lines += ["", interp.notice, "Enter = retake   Esc = back"]
    return lines


class CptScreen:
    def __init__(self, app: App, *, engine_factory: Callable[[], CptEngine]) -> None:
        self._app = app
        self._engine = engine_factory()
        self._small_font = pygame.font.Font(None, 26)
        self._stimulus_font = pygame.font.Font(None, 180)

    def handle_event(self, event: pygame.event.Event) -> None:
        status = self._engine.status
        if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            if status is SessionStatus.RUNNING:
                self._engine.respond()
            return
        if event.type != pygame.KEYDOWN:
            return

        if event.key == pygame.K_SPACE and status is SessionStatus.RUNNING:
            self._engine.respond()
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            if status is SessionStatus.READY:
                self._engine.start()
            elif status is SessionStatus.FINISHED:
                self._engine.retake()
        elif event.key == pygame.K_ESCAPE:
            if status is SessionStatus.RUNNING:
                self._engine.abort()
            self._app.pop()

    def update(self) -> None:
        self._engine.update()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        snap = self._engine.snapshot()

        if snap.status is SessionStatus.READY:
            self._render_lines(surface, _instructions(self._engine.config))
            return
        if snap.status is SessionStatus.FINISHED:
            result = session_result_from_engine(self._engine)
            if result is not None:
                self._render_lines(surface, _results_lines(result.metrics, self._engine))
            return

        header = f"{snap.title}   {snap.phase_label}   Trial {snap.trial_number}   {format_time(snap.time_remaining_ms)}"
        surface.blit(self._small_font.render(header, True, DIM), (20, 16))
        if snap.stimulus_visible and snap.stimulus is not None:
            self._render_stimulus(surface, snap.stimulus)

    def _render_stimulus(self, surface: pygame.Surface, stimulus: str) -> None:
        w, h = surface.get_size()
        if self._engine.config.code == SHAPE_CPT.code:
            side = 160 if stimulus == LARGE_SQUARE else 60
            rect = pygame.Rect(0, 0, side, side)
            rect.center = (w // 2, h // 2)
            pygame.draw.rect(surface, FG, rect)
            return
        text = self._stimulus_font.render(stimulus, True, FG)
        surface.blit(text, text.get_rect(center=(w // 2, h // 2)))

    def _render_lines(self, surface: pygame.Surface, lines: list[str]) -> None:
        y = 30
        for line in lines:
            surface.blit(self._small_font.render(line, True, FG), (40, y))
            y += 28


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()
    pygame.display.set_caption("Continuous Performance Tests")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    frame_clock = pygame.time.Clock()
    app = App(surface=surface)
    real_clock = RealClock()

    def open_protocol(config: ProtocolConfig) -> Callable[[], None]:
        def _open() -> None:
            seed = _new_seed()
            logger.info("opening %s (seed=%d)", config.code, seed)
            app.push(
                CptScreen(
                    app,
                    engine_factory=lambda: build_cpt_engine(config=config, clock=real_clock, seed=seed),
                )
            )

        return _open

    app.push(
        MenuScreen(
            app,
            "Continuous Performance Tests",
            [MenuItem(cfg.title, open_protocol(cfg)) for cfg in PROTOCOLS.values()]
            + [MenuItem("Quit", app.quit)],
            is_root=True,
        )
    )

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.update()
            app.render()
            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            frame_clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
