"""Headless compositor entry point.

Usage:
    compositor list
    compositor export-frames [--canvas NAME_OR_ID] [-o OUTPUT_DIR]
    compositor generate "a lighthouse at dusk" [--canvas NAME_OR_ID]
"""

import argparse
import asyncio
import logging
import os
import sys

from PySide6.QtGui import QGuiApplication

from compositor.core.app import App
from compositor.core.capture import capture_frame
from compositor.core.errors import CompositorError
from compositor.core.settings_controller import SettingsController


logger = logging.getLogger(__name__)


def _find_canvas(app, key):
    if not key:
        return app.canvas
    for canvas in app.collection.canvases:
        if canvas.id == key or canvas.name == key:
            return canvas
    return None


def _select(app, key):
    canvas = _find_canvas(app, key)
    if canvas is None:
        print(f"Error: Canvas not found: {key}")
        sys.exit(1)
    app.collection.select_canvas(canvas.id)
    return canvas


def cmd_list(app, args):
    for canvas in app.collection.canvases:
        marker = "*" if canvas.id == app.collection.active_canvas_id else " "
        print(
            f"{marker} {canvas.id}  {canvas.name}  "
            f"images={len(canvas.images)} frames={len(canvas.frames)} nodes={len(canvas.prompt_nodes)}"
        )
    return 0


def cmd_export_frames(app, args):
    canvas = _select(app, args.canvas)
    if not canvas.frames:
        print(f"No frames in canvas {canvas.name}.")
        return 1

    output_dir = os.path.abspath(args.output)
    os.makedirs(output_dir, exist_ok=True)
    images = list(canvas.images.values())
    exported = 0
    failed = 0
    for frame in sorted(canvas.frames.values(), key=lambda f: f.z_index):
        out_file = os.path.join(output_dir, f"screenshot-{frame.id[:8]}.png")
        try:
            capture_frame(frame, images, app.loader).save(out_file)
        except CompositorError as e:
            failed += 1
            print(f"  [FAIL] {frame.id}: {e}")
            continue
        exported += 1
        print(f"  [{exported}/{len(canvas.frames)}] {out_file}")
    return 0 if failed == 0 else 1


async def _generate(app, prompt):
    job = app.generate_from_text(prompt)
    if job is None:
        return False
    await app.jobs.wait_idle()
    return bool(job.result_ids)


def cmd_generate(app, args):
    canvas = _select(app, args.canvas)
    ok = asyncio.run(_generate(app, args.prompt))
    app.collection.save()
    app.save_settings()
    if not ok:
        print(f"Error: {app.last_error or 'Generation failed.'}")
        return 1
    print(f"Added generated image to {canvas.name}.")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Inspect and render compositor canvases without a window.',
    )
    parser.add_argument(
        '-s', '--settings',
        default='settings.ini',
        help='Path to the settings file (default: settings.ini).',
    )
    parser.add_argument(
        '-w', '--workspace',
        help='Workspace JSON file; overrides the settings value.',
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging.',
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('list', help='List canvases in the workspace.')

    export_parser = subparsers.add_parser('export-frames', help='Capture every frame of a canvas to PNG.')
    export_parser.add_argument('--canvas', help='Canvas name or id (default: the active canvas).')
    export_parser.add_argument(
        '-o', '--output',
        default='./output',
        help='Output directory for PNG files (default: ./output).',
    )

    generate_parser = subparsers.add_parser('generate', help='Generate an image from text into a canvas.')
    generate_parser.add_argument('prompt', help='Text prompt.')
    generate_parser.add_argument('--canvas', help='Canvas name or id (default: the active canvas).')

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    q_app = QGuiApplication.instance() or QGuiApplication(sys.argv[:1])

    settings = SettingsController(args.settings)
    if args.workspace:
        settings.workspace_path = args.workspace
    app = App(settings_controller=settings)

    commands = {
        'list': cmd_list,
        'export-frames': cmd_export_frames,
        'generate': cmd_generate,
    }
    status = commands[args.command](app, args)
    q_app.processEvents()
    return status


if __name__ == "__main__":
    sys.exit(main())
