#!/usr/bin/env python3
"""
Inspect an OpenFace patch expert bank from the command line.

Examples:
    pypatchexperts --cen cen_patches_0.25_of.dat cen_patches_0.35_of.dat
    pypatchexperts --ccnf ccnf_patches_0.25_general.txt.dat --pose 0 30 0
    pypatchexperts --cen cen_patches_0.25_of.dat --pdm pdm_68.txt \\
        --image face.png --params 1.2 0 0 0 160 140 --window-size 11
"""

import argparse
import logging
import sys

import numpy as np
import cv2

from .config import configure_logging, resolve_model_path
from .core.pdm import PDM
from .exceptions import PatchExpertError
from .patch_experts import PatchExperts

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(prog="pypatchexperts",
                                     description="Load OpenFace patch experts and report on them")
    parser.add_argument('--svr', nargs='+', default=[], help='SVR patch expert files, one per scale')
    parser.add_argument('--ccnf', nargs='+', default=[], help='CCNF patch expert files, one per scale')
    parser.add_argument('--cen', nargs='+', default=[], help='CEN patch expert files, one per scale')
    parser.add_argument('--early-term', default=None, help='Early termination parameter file')
    parser.add_argument('--pose', nargs=3, type=float, metavar=('RX', 'RY', 'RZ'),
                        help='Head orientation in degrees; prints the selected view per scale')
    parser.add_argument('--pdm', default=None, help='PDM text file (needed with --image)')
    parser.add_argument('--image', default=None, help='Image to compute response maps on')
    parser.add_argument('--params', nargs=6, type=float, metavar=('S', 'RX', 'RY', 'RZ', 'TX', 'TY'),
                        help='Global shape parameters (rotation in degrees) for --image')
    parser.add_argument('--window-size', type=int, default=11, help='Response map size (default: 11)')
    parser.add_argument('--scale', type=int, default=0, help='Scale level for --image (default: 0)')
    parser.add_argument('--n-jobs', type=int, default=None, help='Worker threads')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def _paths(paths):
    return [resolve_model_path(p) for p in paths]


def _print_info(info):
    print(f"Family: {info['family']}  scales: {info['n_scales']}")
    for scale, level in enumerate(info['scales']):
        print(f"  scale {scale}: reference scale {level['reference_scale']:.3f}, "
              f"{level['n_views']} views, {level['n_points']} landmarks, "
              f"{level['trained_experts']} trained experts")
        for view, center in enumerate(level['view_centers_deg']):
            print(f"    view {view}: {center}")
    if 'early_termination' in info:
        print(f"  early termination entries: {info['early_termination']}")


def _print_responses(experts, args):
    image = cv2.imread(str(args.image), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise PatchExpertError(f"Could not read image: {args.image}")

    pdm = PDM.from_txt(resolve_model_path(args.pdm))
    params_global = np.array(args.params, dtype=np.float64)
    params_global[1:4] = np.radians(params_global[1:4])
    params_local = np.zeros(pdm.n_modes)

    responses, sim_ref_to_img, _ = experts.response(image, pdm, params_global, params_local,
                                                    args.window_size, args.scale)
    computed = [(i, r) for i, r in enumerate(responses) if r is not None]
    print(f"Responses: {len(computed)} of {pdm.n_points} landmarks computed")
    print(f"Reference to image similarity:\n{sim_ref_to_img}")
    for landmark, response in computed:
        peak = np.unravel_index(int(np.argmax(response)), response.shape)
        print(f"  landmark {landmark:3d}: max {response.max():.4f} at {peak}")


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    if not (args.svr or args.ccnf or args.cen):
        print("Error: give at least one of --svr, --ccnf or --cen", file=sys.stderr)
        return 2
    if args.image and not (args.pdm and args.params):
        print("Error: --image needs --pdm and --params", file=sys.stderr)
        return 2

    try:
        experts = PatchExperts.load(svr_paths=_paths(args.svr),
                                    ccnf_paths=_paths(args.ccnf),
                                    cen_paths=_paths(args.cen),
                                    early_term_path=resolve_model_path(args.early_term) if args.early_term else None,
                                    n_jobs=args.n_jobs)
        _print_info(experts.get_info())

        if args.pose:
            params_global = np.array([1.0, *np.radians(args.pose), 0.0, 0.0])
            for scale in range(experts.n_scales):
                print(f"Pose {args.pose} -> scale {scale} view {experts.select_view(params_global, scale)}")

        if args.image:
            _print_responses(experts, args)
    except (PatchExpertError, OSError, ValueError) as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
