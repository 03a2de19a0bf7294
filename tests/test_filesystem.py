import io

import pytest

from jailsmith import filesystem
from jailsmith.filesystem import FileAccess, load_accesses, parse_access


def _run(builder, accesses, **kwargs):
    out = io.StringIO()
    builder(accesses, out, **kwargs)
    return out.getvalue()


def _accesses(*paths, op="open"):
    return [FileAccess(op, p) for p in paths]


# ------------------ Parsing -----------------------


@pytest.mark.parametrize("line, expected", [
    ("123:ls:open /etc/passwd:3", FileAccess("open", "/etc/passwd")),
    ("123:ls:open64 /etc/passwd:-1", FileAccess("open64", "/etc/passwd")),
    ("123:ls:exec /usr/bin/ls:0", FileAccess("exec", "/usr/bin/ls")),
    ("123:ls:stat /run/user/1000/a:b:0", FileAccess("stat", "/run/user/1000/a:b")),
    ("123:ls:opendir /var/lib/../log:0", FileAccess("opendir", "/var/log")),
    ("123:ls:socket AF_INET SOCK_STREAM 0:3", None),
    ("123:ls:open relative/path:3", None),
    ("garbage", None),
])
def test_parse_access(line, expected):
    assert parse_access(line) == expected


def test_load_accesses(write_trace, tmp_path):
    path = write_trace("trace", ["1:p:open /etc/hosts:3", "1:p:socket AF_UNIX SOCK_STREAM 0:4"])
    assert load_accesses(path) == [FileAccess("open", "/etc/hosts")]
    assert load_accesses(str(tmp_path / "missing")) == []


# ------------------ Classifiers -----------------------


def test_build_home():
    accesses = _accesses("/home/u/.config/app/settings", "/home/u/.config/other", "/home/u/Documents/a.txt",
                         "/home/other/.bashrc")
    assert _run(filesystem.build_home, accesses, home="/home/u") == (
        "noblacklist ${HOME}/.config\n"
        "whitelist ${HOME}/.config\n"
        "noblacklist ${HOME}/Documents\n"
        "whitelist ${HOME}/Documents\n"
        "include whitelist-common.inc\n"
    )


def test_build_home_unused():
    assert _run(filesystem.build_home, _accesses("/etc/hosts"), home="/home/u") == "private\n"


def test_build_run_and_runuser():
    accesses = _accesses("/run/dbus/system_bus_socket", "/run/user/1000/pulse/native", "/run/systemd/resolve/x")
    assert _run(filesystem.build_run, accesses) == (
        "whitelist /run/dbus\nwhitelist /run/systemd\ninclude whitelist-run-common.inc\n"
    )
    assert _run(filesystem.build_runuser, accesses, uid=1000) == (
        "whitelist ${RUNUSER}/pulse\ninclude whitelist-runuser-common.inc\n"
    )


def test_build_share_and_var():
    accesses = _accesses("/usr/share/fonts/a.ttf", "/usr/share/icons/x", "/var/lib/app/db")
    assert _run(filesystem.build_share, accesses) == (
        "whitelist /usr/share/fonts\nwhitelist /usr/share/icons\ninclude whitelist-usr-share-common.inc\n"
    )
    assert _run(filesystem.build_var, accesses) == "whitelist /var/lib\ninclude whitelist-var-common.inc\n"


def test_build_bin():
    accesses = _accesses("/usr/bin/ls", "/bin/sh", "/opt/tool/bin/tool", op="exec") + _accesses("/usr/bin/cat")
    assert _run(filesystem.build_bin, accesses) == "private-bin ls,sh\n"
    assert _run(filesystem.build_bin, []) == "#private-bin\n"


def test_build_dev():
    assert _run(filesystem.build_dev, _accesses("/dev/null", "/dev/snd/pcmC0D0p")) == "private-dev\n"
    assert _run(filesystem.build_dev, _accesses("/dev/null", "/dev/video1")) == (
        "#private-dev\t# devices used: video1\n"
    )


def test_build_etc():
    accesses = _accesses("/etc/ld.so.cache", "/etc/passwd", "/etc/fonts/fonts.conf")
    assert _run(filesystem.build_etc, accesses) == "private-etc fonts,passwd\n"
    assert _run(filesystem.build_etc, _accesses("/etc/ld.so.cache")) == "#private-etc\n"


def test_build_tmp():
    assert _run(filesystem.build_tmp, _accesses("/tmp/.X11-unix/X0")) == "#private-tmp\t# /tmp used: .X11-unix\n"
    assert _run(filesystem.build_tmp, []) == "private-tmp\n"
