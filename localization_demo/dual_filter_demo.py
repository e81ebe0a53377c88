"""Dual-Filter Scan-Matching Localization Demo.

Tracks a platform driving a circle inside a synthetic room using:
- 100 Hz gravity-compensated inertial samples (inertial UKF prediction)
- 10 Hz relative odometry transforms (odometry UKF prediction)
- 10 Hz point-cloud scans matched against the room map with 3D ICP

At every scan both filters' pose beliefs are fused in information form to
seed ICP, and the ICP pose corrects both filters.

The run is compared with pure odometry dead reckoning.

Usage:
    python -m localization_demo.dual_filter_demo
    python -m localization_demo.dual_filter_demo --duration 5 --no-plot
    python -m localization_demo.dual_filter_demo --config my_config.json --save out.png
"""

import argparse
import json
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np

from scanloc.coords import (
    euler_to_quat,
    pose_to_matrix,
    quat_to_euler,
    quat_to_rotation_matrix,
    transform_inverse,
    transform_points,
)
from scanloc.eval import (
    compute_error_stats,
    compute_nis,
    compute_position_errors,
    compute_rmse,
    compute_rotation_errors,
)
from scanloc.localization import PoseEstimator, PoseEstimatorConfig
from scanloc.slam import IcpRegistration


def room_surfaces(size: tuple = (10.0, 8.0, 3.0)) -> List[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
    """
    Planar patches of a box room with two pillars.

    Each patch is (origin, edge_u, edge_v); its points are
    origin + s * edge_u + r * edge_v for s, r in [0, 1]. The pillars break
    the room's symmetry so that yaw is observable everywhere.
    """
    lx, ly, lz = size
    ex, ey, ez = np.eye(3)

    surfaces = [
        (np.zeros(3), lx * ex, ly * ey),                 # floor
        (np.array([0.0, 0.0, lz]), lx * ex, ly * ey),    # ceiling
        (np.zeros(3), ly * ey, lz * ez),                 # wall x = 0
        (np.array([lx, 0.0, 0.0]), ly * ey, lz * ez),    # wall x = lx
        (np.zeros(3), lx * ex, lz * ez),                 # wall y = 0
        (np.array([0.0, ly, 0.0]), lx * ex, lz * ez),    # wall y = ly
    ]

    # Pillars: (x_min, y_min, side length)
    for x0, y0, side in ((1.0, 1.0, 0.75), (8.0, 6.0, 1.0)):
        corner = np.array([x0, y0, 0.0])
        surfaces += [
            (corner, side * ex, lz * ez),
            (corner + side * ey, side * ex, lz * ez),
            (corner, side * ey, lz * ez),
            (corner + side * ex, side * ey, lz * ez),
        ]

    return surfaces


def build_room_map(spacing: float = 0.1, size: tuple = (10.0, 8.0, 3.0)) -> np.ndarray:
    """
    Point map of the room, each surface sampled on a regular grid.

    Returns:
        Map points, shape (M, 3).
    """
    patches = []
    for origin, edge_u, edge_v in room_surfaces(size):
        nu = int(np.ceil(np.linalg.norm(edge_u) / spacing)) + 1
        nv = int(np.ceil(np.linalg.norm(edge_v) / spacing)) + 1
        s, r = np.meshgrid(np.linspace(0.0, 1.0, nu), np.linspace(0.0, 1.0, nv))
        patches.append(origin + np.outer(s.ravel(), edge_u) + np.outer(r.ravel(), edge_v))

    return np.unique(np.round(np.vstack(patches), 6), axis=0)


def sample_room_surfaces(
    rng: np.random.Generator,
    n_points: int,
    size: tuple = (10.0, 8.0, 3.0),
) -> np.ndarray:
    """
    Draw points uniformly (by area) from the room surfaces.

    Unlike the map grid, these points fall anywhere on the surfaces, as
    returns from a real range sensor would.
    """
    surfaces = room_surfaces(size)
    areas = np.array([np.linalg.norm(np.cross(u, v)) for _, u, v in surfaces])
    which = rng.choice(len(surfaces), size=n_points, p=areas / areas.sum())
    s = rng.uniform(0.0, 1.0, n_points)
    r = rng.uniform(0.0, 1.0, n_points)

    origins = np.array([surfaces[i][0] for i in which])
    edge_u = np.array([surfaces[i][1] for i in which])
    edge_v = np.array([surfaces[i][2] for i in which])
    return origins + s[:, None] * edge_u + r[:, None] * edge_v


def _circle_state(t: float, center: np.ndarray, radius: float, omega_max: float, tau: float) -> Dict:
    """Position, velocity, acceleration and yaw on a circle started from rest."""
    decay = np.exp(-t / tau)
    theta = omega_max * (t - tau * (1.0 - decay))
    theta_dot = omega_max * (1.0 - decay)
    theta_ddot = omega_max / tau * decay

    radial = np.array([np.cos(theta), np.sin(theta), 0.0])
    tangent = np.array([-np.sin(theta), np.cos(theta), 0.0])

    return {
        'p': center + radius * radial,
        'v': radius * theta_dot * tangent,
        'a': radius * theta_ddot * tangent - radius * theta_dot**2 * radial,
        'yaw': theta + np.pi / 2,
        'yaw_rate': theta_dot,
    }


def generate_scenario(
    duration: float = 20.0,
    imu_rate: float = 100.0,
    scan_every: int = 10,
    acc_noise: float = 0.05,
    gyro_noise: float = 0.005,
    odom_trans_noise: float = 0.01,
    odom_yaw_noise: float = 0.003,
    scan_points: int = 400,
    scan_noise: float = 0.01,
    seed: int = 42,
) -> Dict:
    """
    Simulate sensor streams for a circular drive through the room.

    Args:
        duration: Length of the run (s).
        imu_rate: Inertial sample rate (Hz).
        scan_every: Inertial samples between odometry/scan epochs.
        acc_noise: Accelerometer white noise std (m/s²).
        gyro_noise: Gyroscope white noise std (rad/s).
        odom_trans_noise: Odometry translation noise std per epoch (m).
        odom_yaw_noise: Odometry yaw noise std per epoch (rad).
        scan_points: Points sampled per scan.
        scan_noise: Point noise std (m).
        seed: Random seed.

    Returns:
        Dictionary with 'map', 'imu', 'epochs' (odometry + scans) and 'truth'.
    """
    rng = np.random.default_rng(seed)
    room_map = build_room_map()

    center = np.array([5.0, 4.0, 1.0])
    radius = 2.5
    omega_max = 0.4
    tau = 2.0

    dt = 1.0 / imu_rate
    n_steps = int(round(duration * imu_rate))

    imu_t, imu_acc, imu_gyro = [], [], []
    truth_t, truth_p, truth_q = [], [], []
    epochs = []
    T_prev = None

    for k in range(n_steps + 1):
        t = k * dt
        s = _circle_state(t, center, radius, omega_max, tau)
        q = euler_to_quat(0.0, 0.0, s['yaw'])
        R = quat_to_rotation_matrix(q)
        T = pose_to_matrix(s['p'], q)

        # Gravity-compensated specific force and angular rate in the body frame
        imu_t.append(t)
        imu_acc.append(R.T @ s['a'] + rng.normal(0.0, acc_noise, 3))
        imu_gyro.append(np.array([0.0, 0.0, s['yaw_rate']]) + rng.normal(0.0, gyro_noise, 3))

        truth_t.append(t)
        truth_p.append(s['p'])
        truth_q.append(q)

        if k % scan_every != 0:
            continue

        delta = None
        if T_prev is not None:
            delta = transform_inverse(T_prev) @ T
            noise_yaw = rng.normal(0.0, odom_yaw_noise)
            delta = delta @ pose_to_matrix(
                rng.normal(0.0, odom_trans_noise, 3) * np.array([1.0, 1.0, 0.0]),
                euler_to_quat(0.0, 0.0, noise_yaw),
            )
        T_prev = T

        scan = transform_points(transform_inverse(T), sample_room_surfaces(rng, scan_points))
        scan += rng.normal(0.0, scan_noise, scan.shape)

        epochs.append({'k': k, 't': t, 'odom_delta': delta, 'scan': scan})

    return {
        'map': room_map,
        'imu': {
            't': np.array(imu_t),
            'acc': np.array(imu_acc),
            'gyro': np.array(imu_gyro),
        },
        'epochs': epochs,
        'truth': {
            't': np.array(truth_t),
            'p': np.array(truth_p),
            'q': np.array(truth_q),
        },
        'scan_every': scan_every,
    }


def run_localization(
    scenario: Dict,
    config: Optional[PoseEstimatorConfig] = None,
    initial_offset: Optional[np.ndarray] = None,
    verbose: bool = True,
) -> Dict:
    """
    Run the dual-filter estimator over a simulated scenario.

    Returns:
        History dictionary with per-scan estimates, odometry dead
        reckoning, covariance traces and NIS values.
    """
    if config is None:
        config = PoseEstimatorConfig()
    if initial_offset is None:
        initial_offset = np.array([0.1, -0.1, 0.0])

    imu = scenario['imu']
    truth = scenario['truth']
    epochs = {e['k']: e for e in scenario['epochs']}

    registration = IcpRegistration(
        scenario['map'],
        max_iterations=30,
        tolerance=1e-6,
        max_correspondence_distance=1.0,
    )

    p0 = truth['p'][0] + initial_offset
    q0 = truth['q'][0]
    estimator = PoseEstimator(registration, stamp=imu['t'][0], position=p0, quat=q0, config=config)

    if verbose:
        print("=" * 70)
        print("Dual-Filter Scan-Matching Localization")
        print("=" * 70)
        print(f"\nScenario:")
        print(f"  Map points: {scenario['map'].shape[0]}")
        print(f"  IMU samples: {len(imu['t'])}")
        print(f"  Scans: {len(epochs)}")
        print(f"  Cool time: {estimator.cool_time_duration:.2f} s")
        print(f"\nInitialization:")
        print(f"  Position: {p0}")
        print(f"  Offset from truth: {np.linalg.norm(initial_offset):.3f} m")

    T_dr = pose_to_matrix(p0, q0)

    history = {
        't': [], 'p_est': [], 'q_est': [], 'p_odom': [], 'p_dr': [],
        'p_truth': [], 'q_truth': [], 'P_trace': [],
        'innovation': [], 'S': [], 'n_unconverged': 0, 'fitness': [],
    }

    for k in range(len(imu['t'])):
        t = imu['t'][k]
        estimator.predict(t, imu['acc'][k], imu['gyro'][k])

        epoch = epochs.get(k)
        if epoch is None:
            continue

        if epoch['odom_delta'] is not None:
            estimator.predict_odom(epoch['odom_delta'])
            T_dr = T_dr @ epoch['odom_delta']

        estimator.correct(t, epoch['scan'])
        result = estimator.last_registration
        if not result.converged:
            history['n_unconverged'] += 1

        history['t'].append(t)
        history['p_est'].append(estimator.position())
        history['q_est'].append(estimator.orientation())
        history['p_odom'].append(
            estimator.odometry_position() if epoch['odom_delta'] is not None else estimator.position()
        )
        history['p_dr'].append(T_dr[:3, 3].copy())
        history['p_truth'].append(truth['p'][k])
        history['q_truth'].append(truth['q'][k])
        history['P_trace'].append(np.trace(estimator.inertial_covariance()))
        innovation, S = estimator.inertial_innovation
        history['innovation'].append(innovation)
        history['S'].append(S)
        history['fitness'].append(result.fitness)

        if verbose and len(history['t']) % 50 == 0:
            err = np.linalg.norm(history['p_est'][-1] - truth['p'][k])
            print(f"  t={t:6.2f} s  mode={estimator.mode.value}  error={err:.3f} m  "
                  f"ICP iters={result.iterations}")

    for key in ('t', 'p_est', 'q_est', 'p_odom', 'p_dr', 'p_truth', 'q_truth',
                'P_trace', 'innovation', 'S', 'fitness'):
        history[key] = np.array(history[key])
    history['mode'] = estimator.mode.value

    if verbose:
        print(f"\nLocalization complete:")
        print(f"  Corrections: {len(history['t'])}")
        print(f"  Non-converged scan matches: {history['n_unconverged']}")
        print(f"  Final mode: {history['mode']}")

    return history


def evaluate_results(history: Dict) -> Dict:
    """Evaluate the estimated trajectory against ground truth."""
    errors = compute_position_errors(history['p_truth'], history['p_est'])
    odom_errors = compute_position_errors(history['p_truth'], history['p_odom'])
    dr_errors = compute_position_errors(history['p_truth'], history['p_dr'])
    rot_errors = compute_rotation_errors(history['q_truth'], history['q_est'])
    nis = compute_nis(history['innovation'], history['S'])

    stats = compute_error_stats(errors)

    return {
        'rmse_position': compute_rmse(np.linalg.norm(errors, axis=1)),
        'rmse_odometry_filter': compute_rmse(np.linalg.norm(odom_errors, axis=1)),
        'rmse_dead_reckoning': compute_rmse(np.linalg.norm(dr_errors, axis=1)),
        'rmse_rotation_deg': float(np.degrees(compute_rmse(rot_errors))),
        'p95_position': stats['p95'],
        'max_position': stats['max'],
        'final_error': float(np.linalg.norm(errors[-1])),
        'mean_nis': float(np.nanmean(nis)),
    }


def plot_results(scenario: Dict, history: Dict, save_path: Optional[str] = None) -> None:
    """Generate localization results plots."""
    room_map = scenario['map']

    fig, axes = plt.subplots(2, 2, figsize=(14, 10))

    # 1. Trajectory plot
    ax = axes[0, 0]
    floor = room_map[room_map[:, 2] > 0.9]
    floor = floor[floor[:, 2] < 1.1]
    ax.scatter(floor[:, 0], floor[:, 1], s=2, c='gray', alpha=0.4, label='Map (z≈1 m)')
    ax.plot(history['p_truth'][:, 0], history['p_truth'][:, 1], 'k-', label='Truth', linewidth=2)
    ax.plot(history['p_dr'][:, 0], history['p_dr'][:, 1], 'r--', label='Odometry DR', alpha=0.7)
    ax.plot(history['p_est'][:, 0], history['p_est'][:, 1], 'b-', label='Estimator', alpha=0.8)
    ax.set_xlabel('X [m]')
    ax.set_ylabel('Y [m]')
    ax.set_title('Trajectory')
    ax.legend()
    ax.grid(True)
    ax.axis('equal')

    # 2. Position error
    ax = axes[0, 1]
    err = np.linalg.norm(history['p_est'] - history['p_truth'], axis=1)
    err_dr = np.linalg.norm(history['p_dr'] - history['p_truth'], axis=1)
    ax.plot(history['t'], err, 'b-', label='Estimator')
    ax.plot(history['t'], err_dr, 'r--', label='Odometry DR')
    ax.set_xlabel('Time [s]')
    ax.set_ylabel('Position Error [m]')
    ax.set_title('Position Error vs Time')
    ax.legend()
    ax.grid(True)

    # 3. Yaw error
    ax = axes[1, 0]
    yaw_est = np.array([quat_to_euler(q)[2] for q in history['q_est']])
    yaw_true = np.array([quat_to_euler(q)[2] for q in history['q_truth']])
    yaw_err = np.degrees(np.angle(np.exp(1j * (yaw_est - yaw_true))))
    ax.plot(history['t'], yaw_err, 'g-')
    ax.set_xlabel('Time [s]')
    ax.set_ylabel('Yaw Error [deg]')
    ax.set_title('Heading Error')
    ax.grid(True)

    # 4. Covariance trace
    ax = axes[1, 1]
    ax.plot(history['t'], history['P_trace'], 'b-')
    ax.set_xlabel('Time [s]')
    ax.set_ylabel('Trace(P)')
    ax.set_title('Inertial Filter Covariance Trace (after correction)')
    ax.grid(True)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"\nSaved figure: {save_path}")

    plt.show()


def main():
    """Main entry point for the localization demo."""
    parser = argparse.ArgumentParser(
        description="Dual-Filter Scan-Matching Localization Demo"
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=20.0,
        help="Simulated run length in seconds (default: 20)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON file with PoseEstimatorConfig overrides"
    )
    parser.add_argument(
        "--save",
        type=str,
        default=None,
        help="Path to save results figure"
    )
    parser.add_argument(
        "--no-plot",
        action="store_true",
        help="Skip plotting"
    )

    args = parser.parse_args()

    config = PoseEstimatorConfig.from_json(args.config) if args.config else PoseEstimatorConfig()

    scenario = generate_scenario(duration=args.duration, seed=args.seed)
    history = run_localization(scenario, config=config, verbose=True)

    print("\n" + "=" * 70)
    print("Evaluation Metrics")
    print("=" * 70)
    metrics = evaluate_results(history)
    print(f"  RMSE (position)      : {metrics['rmse_position']:.3f} m")
    print(f"  RMSE (odometry UKF)  : {metrics['rmse_odometry_filter']:.3f} m")
    print(f"  RMSE (dead reckoning): {metrics['rmse_dead_reckoning']:.3f} m")
    print(f"  RMSE (rotation)      : {metrics['rmse_rotation_deg']:.3f} deg")
    print(f"  P95 Error            : {metrics['p95_position']:.3f} m")
    print(f"  Final Error          : {metrics['final_error']:.3f} m")
    print(f"  Mean NIS             : {metrics['mean_nis']:.2f}")
    print("")

    summary = {
        'mode': history['mode'],
        'n_corrections': int(len(history['t'])),
        'n_unconverged': int(history['n_unconverged']),
        'final_error': round(metrics['final_error'], 4),
        'rmse': {
            'position': round(metrics['rmse_position'], 4),
            'odometry_filter': round(metrics['rmse_odometry_filter'], 4),
            'dead_reckoning': round(metrics['rmse_dead_reckoning'], 4),
            'rotation_deg': round(metrics['rmse_rotation_deg'], 4),
        },
    }
    print(f"[LOCALIZATION_SUMMARY] {json.dumps(summary)}")

    if not args.no_plot:
        save_path = args.save if args.save else "localization_demo/figs/dual_filter_results.svg"
        Path(save_path).parent.mkdir(parents=True, exist_ok=True)
        plot_results(scenario, history, save_path=save_path)


if __name__ == "__main__":
    main()
