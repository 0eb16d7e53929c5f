from __future__ import annotations
import sys
import esp_tool.main as _cli_mod


def main():
    if len(sys.argv) == 1:
        # GUI
        import esp_tool.gui.main_qt as _gui_mod
        _gui_mod.main()
    else:
        # CLI
        _cli_mod.app()


if __name__ == "__main__":
    main()
