"""
Open Suminagashi Sim.

Copyright (c) 2026 Shuoqi Chen
SPDX-License-Identifier: MIT OR Apache-2.0
"""
import taichi as ti
import time
from .fluid import MarblingEngine, FluidParams

TOOL_KEYS = {"1": "ink", "2": "stylus", "3": "comb"}


def _add_param_arguments(parser):
    from dataclasses import fields

    for f in fields(FluidParams):
        if f.name == 'ink_color': continue # Skip complex types for CLI for now
        arg_name = f.name.replace('_', '-')
        help_text = f.metadata.get('help', '')
        if isinstance(f.default, bool):
            parser.add_argument(f"--{arg_name}", action="store_true" if not f.default else "store_false",
                                dest=f.name, default=f.default, help=help_text)
        elif "choices" in f.metadata:
            parser.add_argument(f"--{arg_name}", choices=f.metadata["choices"], default=f.default, help=help_text)
        else:
            parser.add_argument(f"--{arg_name}", type=type(f.default), default=f.default, help=help_text)


def _draw_param_sliders(gui, engine, category):
    from dataclasses import fields

    for f in fields(FluidParams):
        if f.metadata.get("category") != category:
            continue
        if f.name in ["tool", "ink_color"]: continue # Handled specially

        display_name = f.name.replace("_", " ").title()
        val = getattr(engine.p, f.name)
        if isinstance(val, bool):
            new_val = gui.checkbox(display_name, val)
        elif isinstance(val, int):
            new_val = gui.slider_int(display_name, val, f.metadata.get('min', 0), f.metadata.get('max', 100))
        else:
            new_val = gui.slider_float(display_name, val, f.metadata.get('min', 0.0), f.metadata.get('max', 1.0))
        setattr(engine.p, f.name, new_val)


def launch_viewer():
    import argparse
    from dataclasses import fields

    parser = argparse.ArgumentParser(description="Suminagashi Simulator: Ink Marbling on Water")
    parser.add_argument("-r", "--res", type=int, default=768, help="Window resolution (default: 768)")
    parser.add_argument("-f", "--fps", type=int, default=60, help="Target FPS cap (default: 60)")
    parser.add_argument("-a", "--arch", default="gpu", help="Taichi backend: gpu, cpu, cuda, vulkan, metal (default: gpu)")
    parser.add_argument("--velocity-storage", choices=("auto", "native", "quantized"), default="auto",
                        help="Velocity storage path (default: auto)")
    _add_param_arguments(parser)

    args = parser.parse_args()

    RES = args.res

    print(f"\n[Suminagashi] Starting Marbling Simulator")
    print(f" - Window:     {RES}x{RES}")
    print(f" - Backend:    {args.arch.upper()}")
    print(f" - FPS Cap:    {args.fps}")
    print(f"--------------------------------")

    # Initialize Engine
    engine = MarblingEngine(arch=args.arch, velocity_storage=args.velocity_storage)
    engine.allocate_for_surface(RES, RES)

    cli_params = {}
    for f in fields(FluidParams):
        if hasattr(args, f.name):
            cli_params[f.name] = getattr(args, f.name)
    engine.update_params(**cli_params)

    window = ti.ui.Window("Suminagashi: Ink Marbling", (RES, RES))
    canvas = window.get_canvas()
    gui = window.get_gui()
    img = ti.Vector.field(3, dtype=ti.f32, shape=(engine.width, engine.height))

    last_pos = None
    frame_idx = 0
    show_advanced = False
    show_ui = True

    print("\n[Controls]")
    print(" - Mouse Left (LMB): Use the active tool")
    print(" - 1 / 2 / 3: Ink / Stylus / Comb")
    print(" - Shift + drag: Stylus and comb also lay ink")
    print(" - R: Reset the water")
    print(" - S: Save Screenshot")

    last_frame = time.time()
    fps_limit = args.fps

    while window.running:
        frame_start = time.time()

        events = window.get_events(ti.ui.PRESS)
        for e in events:
            if e.key == 'r':
                engine.reset()
            elif e.key in TOOL_KEYS:
                engine.update_params(tool=TOOL_KEYS[e.key])
                print(f"Tool: {engine.p.tool}")
            elif e.key == 's':
                path = f"marbling_{int(time.time())}.png"
                engine.save_screenshot(path)
                print(f"Saved screenshot to {path}.")
            elif e.key == ti.ui.TAB:
                show_ui = not show_ui
            elif e.key == ti.ui.ESCAPE:
                window.running = False

        if window.is_pressed(ti.ui.LMB):
            # ti.ui.Window (GGUI) uses [0,1] with origin at BOTTOM-LEFT, same as the simulation domain.
            x, y = window.get_cursor_pos()
            shift = window.is_pressed(ti.ui.SHIFT)
            if last_pos is None:
                if engine.p.tool == "ink":
                    engine.drop_ink(x, y)
            else:
                dx, dy = x - last_pos[0], y - last_pos[1]
                if engine.p.tool == "ink":
                    engine.paint_ink(x, y, dx, dy)
                else:
                    engine.disturb(x, y, dx, dy, with_ink=shift)
            last_pos = (x, y)
        else:
            last_pos = None

        # UI Sidebar (Overlay)
        if show_ui:
            with gui.sub_window("Controls", 0.02, 0.02, 0.3, 0.6) as w:
                gui.text(f"Tool: {engine.p.tool} [1/2/3]")
                gui.text("Toggle UI: [Tab]")
                if gui.button("Reset Water"): engine.reset()

                engine.p.ink_color = gui.color_edit_3("Ink Color", engine.p.ink_color)
                _draw_param_sliders(gui, engine, "Normal")

                show_advanced = gui.checkbox("Advanced Settings", show_advanced)
                if show_advanced:
                    _draw_param_sliders(gui, engine, "Advanced")

        # Sync GUI to Engine
        engine.update_params()

        now = time.time()
        engine.advance(now - last_frame)
        last_frame = now

        img.from_numpy(engine.render())
        canvas.set_image(img)
        window.show()
        frame_idx += 1

        # Enforce FPS cap to prevent resource hogging
        elapsed = time.time() - frame_start
        if elapsed < 1.0 / fps_limit:
            time.sleep(1.0 / fps_limit - elapsed)

if __name__ == "__main__":
    launch_viewer()
