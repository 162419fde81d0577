"""bravetone — pink/green duotone pixel transform and its IPC sidecar."""

from bravetone._version import __version__
