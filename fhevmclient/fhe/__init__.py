from .base_instance import BaseFhevmInstance, InstanceKind
from .mock_instance import MockCoprocessor, MockFhevmInstance
from .relayer_client import RelayerClient
from .relayer_instance import RelayerFhevmInstance

# The FHE Instance Registry
instance_registry = {
    InstanceKind.MOCK: MockFhevmInstance,
    InstanceKind.PRODUCTION: RelayerFhevmInstance,
}
