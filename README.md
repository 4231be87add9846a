# pinit

`pinit` holds the building blocks of a small init system: parsing of
INI-style unit files, an asyncio service registry that starts, supervises,
restarts and stops service processes, a JSON file recording which services
are enabled, the binary messages exchanged between a control utility, a
daemon, its worker and launch wrappers, and two commands: the control
utility `pinitctl` and the wrapper launcher `pinitd`.

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## The control utility

`pinitctl` sends one command to a daemon listening on `127.0.0.1:1717` and
prints its answer:

```
pinitctl list                # all known services and their status
pinitctl status <name>       # status of one service
pinitctl config <name>       # the loaded configuration of a service
pinitctl start <name>
pinitctl stop <name>
pinitctl restart <name>
pinitctl enable <name>       # start on daemon boot if Autostart=true
pinitctl disable <name>      # prevent autostart
pinitctl reload <name>       # reload one unit file from disk
pinitctl reload-all          # reload every unit file from disk
pinitctl shutdown            # ask the daemon to shut down gracefully
```

If nothing is listening, `pinitctl` prints `Cannot find pinitd. Is it
running?` to standard error and exits with status 1. An error answer is
printed as `Error: <message>` to standard error, also with status 1.

Statuses are shown as a table:

```
NAME                 ENABLED    STATE                     UID
--------------------------------------------------------------------------------
example              true       Running (PID: 4242)       2000 (Shell)
```

The same pieces are available from Python: `pinit.cli.parse_command`,
`pinit.cli.send_command` (a coroutine), `pinit.cli.format_response` and
`pinit.cli.format_status_table`.

## The wrapper launcher

`pinitd` has two modes, which a supervisor uses to launch services:

```
pinitd monitored-wrapper [--is-zygote] <uuid> "<command>"
pinitd internal-wrapper [--is-zygote] "<command>"
```

`monitored-wrapper` connects to the process manager on `127.0.0.1:1719`,
announces its launch id and exits if told to; if nothing is listening it
launches anyway. It runs the command with `sh -c`, reports the child's pid
and, when it ends, its exit code. `internal-wrapper` first checks that
`uname -m` reports `aarch64`, then launches the command without monitoring.
With `--is-zygote` on Android, the wrapper's pid is written, big-endian, to the
file descriptor that follows `com.android.internal.os.WrapperInit` on its
command line.

## Unit files

A unit file has a single `[Service]` section. Keys and values are separated
by `=` or `:`, lines starting with `#` or `;` are comments, and a value in
matching quotes has them removed.

```ini
[Service]
Name = example
Exec = /system/bin/sleep 1000
Uid = 2000
Autostart = true
Restart = on-failure
```

| Property          | Meaning                                                                |
|-------------------|------------------------------------------------------------------------|
| `Name`            | Service name (required, non-empty)                                     |
| `Exec`            | Arbitrary shell command                                                |
| `ExecPackage`     | `package/content/path`: a binary inside an installed package           |
| `ExecJvmClass`    | `package/class.Name`: a JVM class started with `app_process`           |
| `ExecArgs`        | Extra arguments for `ExecPackage` or `ExecJvmClass`                    |
| `JvmArgs`         | Extra JVM arguments for `ExecJvmClass`                                 |
| `TriggerActivity` | `package/activity` used to trigger a zygote spawn                      |
| `Uid`             | `1000` (system), `2000` (shell, the default) or another numeric uid    |
| `SeInfo`          | SELinux info string for zygote spawns                                  |
| `NiceName`        | Process name; only allowed with `Uid = 1000`                           |
| `Autostart`       | `true` to start when the daemon boots (case-insensitive)               |
| `Restart`         | `always`, `on-failure` or `none` (the default), case-insensitive       |

One of `Exec`, `ExecPackage` or `ExecJvmClass` must be given; if several are,
the last wins. Any other property, a missing `[Service]` section or a bad
value raises `pinit.errors.ConfigError`.

```python
from pinit.unitfile import parse_unit_file

config = parse_unit_file("units/example.unit")
print(config.name, config.uid, config.restart, config.autostart)
```

## The service registry

`pinit.local_registry.LocalRegistry` keeps services in memory behind one
asyncio lock. `LocalRegistry.new_controller(stored_state)` persists enabling
and disabling through a `pinit.state.StoredState`;
`LocalRegistry.new_worker(connection)` treats every service as enabled and
reports each change over a `pinit.connection.ControllerConnection`.

```python
import asyncio, uuid
from pinit.local_registry import LocalRegistry
from pinit.state import StoredState
from pinit.unitfile import parse_unit_file

async def run():
    registry = LocalRegistry.new_controller(StoredState.load("pinitd.state"))
    config = parse_unit_file("units/example.unit")
    await registry.insert_unit(config, enabled=True)
    await registry.service_start_with_id(config.name, uuid.uuid4())
    print(await registry.service_list_all())
    await registry.shutdown()

asyncio.run(run())
```

A started service is launched as `sh -c '<wrapper> monitored-wrapper ...'`
and watched; when it exits it becomes `Stopped` or `Failed`, and it is
restarted after one second if it is enabled and its restart policy asks for
it. `service_stop` sends `SIGTERM` and marks the service `Stopping`.

The state file is JSON holding `enabled_services` and `is_dummy`; a missing
file means nothing is enabled. By default it is
`test_data/pinitd/pinitd.state`, and `/sdcard/penumbra/etc/pinitd/pinitd.state`
on Android.

## Wire format

Messages are defined in `pinit.protocol` (control utility and process
manager) and `pinit.worker_protocol` (controller and worker), encoded with
`pinit.codec`, and framed as a little-endian 64-bit length followed by the
payload (`pinit.protocol.frame`, `read_message`, `write_message`).
`pinit.connection` provides the controller's and the worker's sides of the
worker socket on `127.0.0.1:1718`.

## What is not included

- There is no daemon: nothing in this package listens on port 1717 for
  `pinitctl`, loads the unit directory at boot, runs the process manager on
  port 1719 or starts a worker process. `pinitctl` is only useful against a
  daemon provided elsewhere.
- `pinitd` has only the two wrapper modes above.
- Services with a uid other than 1000 or 2000 need a zygote spawn, which is
  not available; starting one marks it `Failed` with a `ProcessSpawnError`.