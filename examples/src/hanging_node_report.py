#!/usr/bin/env python3
"""
Print the hanging-node constraints of a locally refined mesh.

Refines the root element at the origin (and, with --depth > 1, the son
touching the origin repeatedly), lets the driver restore 2:1 balance,
then lists every hanging node with its masters and weights and checks
that the weights form a partition of unity.

Usage:
    python hanging_node_report.py --dim 2 --order 2
    python hanging_node_report.py --dim 3 --depth 2

Author: Wataru Fukuda
"""

import sys
import argparse
import logging
import os

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from watfAMR import (AdaptationDriver, build_line_mesh, build_rectangle_mesh,
                     build_brick_mesh, setup_logging)
from watfAMR.constraints import check_partition_of_unity


def build_mesh(dim, nnode_1d):
    if dim == 1:
        return build_line_mesh(2, nnode_1d=nnode_1d)
    if dim == 2:
        return build_rectangle_mesh(2, 2, nnode_1d=nnode_1d)
    return build_brick_mesh(2, 2, 2, nnode_1d=nnode_1d)


def main():
    parser = argparse.ArgumentParser(description="Hanging-node constraint report")
    parser.add_argument("--dim", type=int, choices=(1, 2, 3), default=2)
    parser.add_argument("--order", type=int, default=1, help="Polynomial order of the elements")
    parser.add_argument("--depth", type=int, default=1, help="Refinement depth at the origin")
    parser.add_argument("--debug", action="store_true", help="enable debug output")
    args = parser.parse_args()
    if args.depth < 1:
        parser.error("--depth must be at least 1")

    setup_logging(logging.DEBUG if args.debug else logging.WARNING)

    mesh = build_mesh(args.dim, args.order + 1)
    driver = AdaptationDriver(mesh)

    target = mesh.roots[0]
    for _ in range(args.depth):
        report = driver.refine_selected([target])
        target = mesh.tree_node(target).children[0]

    print("=" * 60)
    print(f"{args.dim}D mesh, order {args.order}, refined {args.depth} level(s) at the origin")
    print("=" * 60)
    print(f"  Leaf elements:    {report.n_elements}")
    print(f"  Balancing splits: {report.n_balance_splits}")
    print(f"  Nodes:            {mesh.n_nodes}")
    print(f"  Hanging nodes:    {report.n_hanging}")
    print(f"  Unknowns:         {report.n_dof}")

    print("\nConstraints:")
    for node in mesh.hanging_nodes():
        position = np.array2string(node.coordinates, precision=4)
        terms = ", ".join(
            f"{w:+.4f}*{np.array2string(mesh.nodes[m].coordinates, precision=4)}"
            for m, w in node.hanging.masters
        )
        print(f"  {position} = {terms}")

    constraints = {n.id: n.hanging for n in mesh.hanging_nodes()}
    bad = check_partition_of_unity(constraints)
    if bad is None:
        print("\nAll constraint weights sum to one.")
    else:
        print(f"\nWeights of node {bad} do not sum to one!")
        sys.exit(1)


if __name__ == "__main__":
    main()
