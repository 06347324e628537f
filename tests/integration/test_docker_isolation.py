import os
import shutil
from pathlib import Path
from typing import Iterator

import pytest

from safe_cpp_engine import EngineConfig, ExecutionOptions, ExitStatus, Orchestrator


def _docker_ready() -> bool:
    if shutil.which("docker") is None or shutil.which("g++") is None:
        return False
    return os.getenv("RUN_DOCKER_TESTS") == "1"


pytestmark = pytest.mark.skipif(not _docker_ready(), reason="Docker integration tests disabled")


@pytest.fixture(scope="module")
def orchestrator(tmp_path_factory: pytest.TempPathFactory) -> Iterator[Orchestrator]:
    scratch: Path = tmp_path_factory.mktemp("sce-docker")
    config = EngineConfig.load(env={"SCE_ISOLATION": "isolated", "SCE_SCRATCH_DIR": str(scratch)})
    engine = Orchestrator(config)
    engine.initialize()
    yield engine
    engine.isolation("isolated").client.cleanup_stale()


def test_isolated_run_echoes_stdin(orchestrator: Orchestrator) -> None:
    source = "#include <iostream>\nint main(){int a,b;std::cin>>a>>b;std::cout<<a+b<<std::endl;return 0;}\n"

    result = orchestrator.execute(source, ExecutionOptions(stdin="3 4\n", isolation="isolated"))

    assert result.status is ExitStatus.EXITED
    assert result.stdout == "7\n"
    assert result.isolation == "isolated"
    assert result.peak_memory_kb is None


def test_isolated_run_has_no_network(orchestrator: Orchestrator) -> None:
    source = (
        "#include <sys/socket.h>\n#include <netinet/in.h>\n#include <arpa/inet.h>\n#include <unistd.h>\n"
        "int main(){int fd=socket(AF_INET,SOCK_STREAM,0);sockaddr_in a{};a.sin_family=AF_INET;"
        "a.sin_port=htons(53);inet_pton(AF_INET,\"1.1.1.1\",&a.sin_addr);"
        "return connect(fd,(sockaddr*)&a,sizeof a)==0?0:9;}\n"
    )

    result = orchestrator.execute(source, ExecutionOptions(isolation="isolated", timeout_seconds=5))

    assert result.exit_code == 9


def test_isolated_crash_is_reported_as_signal(orchestrator: Orchestrator) -> None:
    source = "int main(){volatile int* p=nullptr;*p=1;return 0;}\n"

    result = orchestrator.execute(source, ExecutionOptions(isolation="isolated"))

    assert result.status is ExitStatus.CRASHED
    assert result.signal == 11


def test_isolated_timeout_leaves_no_container(orchestrator: Orchestrator) -> None:
    result = orchestrator.execute("int main(){for(;;){}}\n", ExecutionOptions(isolation="isolated", timeout_seconds=1))

    assert result.status is ExitStatus.TIMED_OUT
    assert orchestrator.isolation("isolated").client.list_containers(all_states=True) == []
