#!/usr/bin/env python3
"""
Demo: Generate Graphviz DOT diagrams of form expression dependencies.

Shows all three visualization modes (SIMPLE, DETAILED, CLUSTERED).
"""

from formstate.examples import build_triage_form
from formstate.backends import generate_dot, save_dot_file, DotMode


def main():
    form = build_triage_form()

    print("=" * 80)
    print("DOT GENERATOR DEMO")
    print("=" * 80)

    for mode in DotMode:
        print(f"\n{mode.value.upper()} MODE:")
        print("-" * 80)

        print(generate_dot(form, mode=mode))

        filename = f"{form.name}_{mode.value}.dot"
        save_dot_file(form, filename, mode=mode)
        print(f"\nSaved to: {filename}")

    print("\n" + "=" * 80)
    print("To visualize the diagrams:")
    for mode in DotMode:
        print(f"  dot -Tpng {form.name}_{mode.value}.dot -o {form.name}_{mode.value}.png")
    print("=" * 80)


if __name__ == "__main__":
    main()
