#!/usr/bin/env python3
"""
Example: Adaptive solution of a Poisson problem with a sharp interior layer.

This example demonstrates:
1. Building a coarse refineable quad mesh
2. Solving -Laplacian(u) = f with hanging-node constraints
3. Estimating the error with Z2 flux recovery
4. Refining/unrefining with 2:1 balancing until the error is in band

The problem:
    -Laplacian(u) = f  in [0,1]^2
    u = u_exact        on boundary

Exact solution: u(x,y) = atan(alpha * (r - r0)), r = |(x,y) - (-0.05,-0.05)|
(a circular front of steepness alpha).

Author: Wataru Fukuda
"""

import sys
import argparse
import logging
import os

# Use Agg backend if --save is specified (non-interactive)
if '--save' in sys.argv:
    import matplotlib
    matplotlib.use('Agg')

import matplotlib.pyplot as plt
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from watfAMR import (AdaptivityConfig, AdaptationDriver, Z2ErrorEstimator, DirichletBC,
                     PoissonSolver, PoissonParameters, build_rectangle_mesh, compute_l2_error,
                     load_config, setup_logging)

ALPHA = 50.0
R0 = 0.7
CENTRE = np.array([-0.05, -0.05])


def exact_solution(x, y):
    r = np.hypot(x - CENTRE[0], y - CENTRE[1])
    return np.arctan(ALPHA * (r - R0))


def source_function(x, y):
    """f = -Laplacian(u) for the radial front."""
    r = np.hypot(x - CENTRE[0], y - CENTRE[1])
    t = ALPHA * (r - R0)
    du_dr = ALPHA / (1.0 + t * t)
    d2u_dr2 = -2.0 * ALPHA * ALPHA * t / (1.0 + t * t) ** 2
    return -(d2u_dr2 + du_dr / r)


def plot_mesh(mesh, ax, title):
    """Draw leaf elements coloured by level, hanging nodes in red."""
    cmap = plt.cm.viridis
    max_level = max(mesh.max_level(), 1)
    for h in mesh.leaves():
        element = mesh.element(h)
        corners = np.array([v.coordinates for v in element.vertex_nodes()])
        outline = corners[[0, 1, 3, 2, 0]]
        ax.fill(outline[:, 0], outline[:, 1],
                color=cmap(mesh.level(h) / max_level), alpha=0.4, linewidth=0)
        ax.plot(outline[:, 0], outline[:, 1], 'k-', linewidth=0.5)

    hanging = np.array([n.coordinates for n in mesh.hanging_nodes()]).reshape(-1, 2)
    if len(hanging):
        ax.plot(hanging[:, 0], hanging[:, 1], 'r.', markersize=4, label='hanging nodes')
        ax.legend(loc='upper right', fontsize=8)
    ax.set_aspect('equal')
    ax.set_title(title)


def main():
    parser = argparse.ArgumentParser(description="Adaptive Poisson solver example")
    parser.add_argument("--cycles", type=int, default=5, help="Adaptation cycles")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON file with an 'adaptivity' section")
    parser.add_argument("--save", action="store_true", help="Save figure to file")
    parser.add_argument("--debug", action="store_true", help="enable debug output")
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    if args.config is not None:
        config = load_config(args.config)
    else:
        config = AdaptivityConfig(max_permitted_error=0.02, min_permitted_error=1e-4,
                                  max_refinement_level=6)

    print("=" * 70)
    print("Adaptive Poisson Solver Example")
    print("=" * 70)

    mesh = build_rectangle_mesh(4, 4, config=config)
    for name in ("left", "right", "bottom", "top"):
        mesh.add_dirichlet_bc(DirichletBC(name, exact_solution))

    parameters = PoissonParameters(source=source_function)
    driver = AdaptationDriver(mesh, Z2ErrorEstimator.from_config(config))

    print(f"{'Cycle':<8} {'Elements':<10} {'Hanging':<10} {'DOFs':<8} {'L2 Error':<15}")
    print("-" * 55)

    fig, axes = plt.subplots(1, 2, figsize=(12, 6))
    for cycle in range(args.cycles + 1):
        solver = PoissonSolver(mesh, parameters)
        solver.run()
        error = compute_l2_error(mesh, exact_solution)
        print(f"{cycle:<8} {mesh.n_elements:<10} {mesh.n_hanging:<10} "
              f"{solver.n_dof:<8} {error:<15.6e}")
        if cycle == 0:
            plot_mesh(mesh, axes[0], "Initial mesh")
        if cycle < args.cycles:
            driver.adapt()

    plot_mesh(mesh, axes[1], f"After {args.cycles} adaptation cycles")
    plt.tight_layout()

    if args.save:
        plt.savefig("adaptive_poisson_2d.png", dpi=150)
        print("\nSaved adaptive_poisson_2d.png")
    else:
        plt.show()


if __name__ == "__main__":
    main()
