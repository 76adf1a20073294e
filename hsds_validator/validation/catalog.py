"""
Resource catalog: the Open Referral resource types accepted in an archive

Adding or removing a supported resource is an edit to DEFAULT_RESOURCES.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from hsds_validator.api.models import ResourceDescriptor

DEFAULT_RESOURCES: Tuple[Tuple[str, str], ...] = (
    ('accessibility_for_disabilities', 'accessibility_for_disabilities.csv'),
    ('contact', 'contact.csv'),
    ('eligibility', 'eligibility.csv'),
    ('funding', 'funding.csv'),
    ('holiday_schedule', 'holiday_schedule.csv'),
    ('language', 'language.csv'),
    ('location', 'location.csv'),
    ('meta_table_description', 'meta_table_description.csv'),
    ('metadata', 'metadata.csv'),
    ('organization', 'organization.csv'),
    ('organization_id', 'organization_id.csv'),
    ('payment_accepted', 'payments_accepted.csv'),
    ('phone', 'phone.csv'),
    ('physical_address', 'physical_address.csv'),
    ('postal_address', 'postal_address.csv'),
    ('program', 'program.csv'),
    ('regular_schedule', 'regular_schedule.csv'),
    ('required_document', 'required_document.csv'),
    ('service_area', 'service_area.csv'),
    ('service', 'service.csv'),
    ('service_at_location', 'service_at_location.csv'),
    ('service_taxonomy', 'service_taxonomy.csv'),
    ('taxonomy', 'taxonomy.csv'),
)


class ResourceCatalog:
    """Ordered, read-only registry of resource descriptors"""

    def __init__(self, descriptors: Iterable[ResourceDescriptor]):
        self._entries: Tuple[ResourceDescriptor, ...] = tuple(descriptors)
        self._by_name: Dict[str, ResourceDescriptor] = {}

        for descriptor in self._entries:
            if descriptor.name in self._by_name:
                raise ValueError(f"Duplicate catalog entry: {descriptor.name}")
            self._by_name[descriptor.name] = descriptor

    @classmethod
    def default(cls) -> 'ResourceCatalog':
        return cls(ResourceDescriptor(name, file_name) for name, file_name in DEFAULT_RESOURCES)

    def entries(self) -> Tuple[ResourceDescriptor, ...]:
        return self._entries

    def names(self) -> List[str]:
        return [descriptor.name for descriptor in self._entries]

    def get(self, name: str) -> Optional[ResourceDescriptor]:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)


RESOURCE_CATALOG = ResourceCatalog.default()
