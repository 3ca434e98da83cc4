"""
nvidler
=======

The GPU idle-process monitor that runs on a shared GPU host.

What it does:
  1. Ask the driver which processes hold a GPU compute context (nvidia-smi / NVML)
  2. Look up each process's command name and start time (psutil, ps fallback)
  3. Map processes to Docker containers by container root PID
  4. Decide: exempt, active, idle below threshold, idle above threshold
  5. Warn about idle workloads, or send them SIGTERM
  6. Sleep, then do it all again

Idle time is measured from the process start time, not from the last moment
the process was seen using GPU memory. Restarting the monitor therefore loses
nothing.

Requirements:
  pip install psutil docker nvidia-ml-py

Usage:
  python -m nvidler.agent --idle-time-threshold 600 --no-warning-only
"""

__version__ = "0.3.0"
