"""Structured builder for aliased multi-mutation GraphQL documents.

Values never get interpolated into the document text. Every argument travels
as a variable; the document only holds generated aliases, field names and
variable references, so per-alias results can be mapped back to entities
without parsing anything.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from channelsync.config import settings
from channelsync.sync.models import AttributeSet

logger = structlog.get_logger(__name__)

METAFIELD_NAMESPACE = "mm-google-shopping"
METAFIELD_TYPE = "single_line_text_field"

# AttributeSet key -> metafield key
ATTRIBUTE_METAFIELD_KEYS = {
    "category": "google_product_category",
    "color": "color",
    "size": "size",
    "gender": "gender",
    "age_group": "age_group",
}


@dataclass(frozen=True)
class Selection:
    """A selected field and its sub-fields."""

    name: str
    fields: Tuple["Selection", ...] = ()

    def render(self) -> str:
        if not self.fields:
            return self.name
        inner = " ".join(f.render() for f in self.fields)
        return f"{self.name} {{ {inner} }}"


USER_ERRORS = Selection("userErrors", (Selection("field"), Selection("message")))


@dataclass(frozen=True)
class Argument:
    name: str
    graphql_type: str
    value: Any


@dataclass(frozen=True)
class AliasedMutation:
    """One sub-mutation of a document, tied to the entity it changes."""

    alias: str
    entity_id: str
    field_name: str
    arguments: Tuple[Argument, ...]
    selection: Tuple[Selection, ...] = (USER_ERRORS,)

    def variable_name(self, argument: Argument) -> str:
        return f"{self.alias}_{argument.name}"


@dataclass
class MutationDocument:
    """A single wire-level request holding several aliased mutations."""

    mutations: List[AliasedMutation]
    operation_name: str = "BulkUpdate"

    def to_payload(self) -> Dict[str, Any]:
        definitions: List[str] = []
        fields: List[str] = []
        variables: Dict[str, Any] = {}

        for mutation in self.mutations:
            args: List[str] = []
            for argument in mutation.arguments:
                var = mutation.variable_name(argument)
                definitions.append(f"${var}: {argument.graphql_type}")
                args.append(f"{argument.name}: ${var}")
                variables[var] = argument.value
            selection = " ".join(s.render() for s in mutation.selection)
            fields.append(
                f"{mutation.alias}: {mutation.field_name}({', '.join(args)}) {{ {selection} }}"
            )

        query = (
            f"mutation {self.operation_name}({', '.join(definitions)}) "
            f"{{ {' '.join(fields)} }}"
        )
        return {"query": query, "variables": variables}

    @property
    def entity_ids(self) -> List[str]:
        seen: Dict[str, None] = {}
        for mutation in self.mutations:
            seen.setdefault(mutation.entity_id, None)
        return list(seen)

    def entity_errors(self, body: Mapping[str, Any]) -> Dict[str, Optional[str]]:
        """Map each entity in the document to its first error, or None on success.

        An alias fails when it reports userErrors, when it returned null, or
        when a top-level error names it in its path.
        """
        data = body.get("data") or {}
        errors_by_alias: Dict[str, str] = {}
        for error in body.get("errors") or []:
            if not isinstance(error, dict):
                continue
            path = error.get("path") or []
            if path:
                errors_by_alias.setdefault(str(path[0]), str(error.get("message", "Unknown error")))

        result: Dict[str, Optional[str]] = {entity_id: None for entity_id in self.entity_ids}
        for mutation in self.mutations:
            if result[mutation.entity_id] is not None:
                continue
            node = data.get(mutation.alias) if isinstance(data, dict) else None
            if node is None:
                result[mutation.entity_id] = errors_by_alias.get(
                    mutation.alias, "No result returned for mutation"
                )
                continue
            if not isinstance(node, dict):
                result[mutation.entity_id] = "Malformed mutation result"
                continue
            user_errors = node.get("userErrors") or []
            if user_errors:
                result[mutation.entity_id] = _user_error_message(user_errors)
        return result


def _user_error_message(user_errors: Any) -> str:
    if not isinstance(user_errors, list):
        return str(user_errors)
    first = user_errors[0]
    if isinstance(first, dict):
        return str(first.get("message") or "Unknown error")
    return str(first) or "Unknown error"


@dataclass
class BuildResult:
    """Documents to send, plus entities that need no remote call at all."""

    documents: List[MutationDocument] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)

    @property
    def mutation_count(self) -> int:
        return sum(len(d.mutations) for d in self.documents)


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class MutationBuilder:
    """Turns entity ids plus a desired state into grouped mutation documents."""

    def __init__(
        self,
        mutations_per_request: int = settings.MUTATIONS_PER_REQUEST,
        attribute_group_size: int = settings.ATTRIBUTE_GROUP_SIZE,
    ):
        """Initialize builder.

        Args:
            mutations_per_request: Ceiling on aliased mutations in one request
            attribute_group_size: Entities per attribute request
        """
        self.mutations_per_request = max(1, mutations_per_request)
        self.attribute_group_size = max(1, attribute_group_size)

    def entities_per_channel_request(self, channel_count: int) -> int:
        """Entities per request when each entity gets one mutation per channel."""
        return max(1, self.mutations_per_request // max(1, channel_count))

    def build_channel_documents(
        self, entity_ids: Sequence[str], publication_ids: Sequence[str]
    ) -> BuildResult:
        """Publish every entity to every publication.

        Args:
            entity_ids: Normalized entity ids
            publication_ids: Resolved publication ids (unknown channel names
                already dropped)

        Returns:
            BuildResult; with no publications every entity is skipped
        """
        if not publication_ids:
            return BuildResult(skipped_ids=list(entity_ids))

        group = self.entities_per_channel_request(len(publication_ids))
        documents = []
        for chunk in _chunks(entity_ids, group):
            mutations = []
            for e_idx, entity_id in enumerate(chunk):
                for p_idx, publication_id in enumerate(publication_ids):
                    mutations.append(
                        AliasedMutation(
                            alias=f"p{e_idx}_{p_idx}",
                            entity_id=entity_id,
                            field_name="publishablePublish",
                            arguments=(
                                Argument("id", "ID!", entity_id),
                                Argument(
                                    "input",
                                    "[PublicationInput!]!",
                                    [{"publicationId": publication_id}],
                                ),
                            ),
                        )
                    )
            documents.append(MutationDocument(mutations, operation_name="PublishProducts"))
        return BuildResult(documents=documents)

    def build_attribute_documents(
        self,
        entity_ids: Sequence[str],
        attributes: "AttributeSet | Mapping[str, AttributeSet]",
    ) -> BuildResult:
        """Set marketplace metafields for every entity with non-blank attributes.

        Args:
            entity_ids: Normalized entity ids
            attributes: One AttributeSet for all entities, or one per entity

        Returns:
            BuildResult; entities whose attributes are all blank are skipped
        """
        result = BuildResult()
        pending: List[Tuple[str, Dict[str, str]]] = []

        for entity_id in entity_ids:
            if isinstance(attributes, AttributeSet):
                values = attributes.non_blank()
            else:
                entity_attrs = attributes.get(entity_id)
                values = entity_attrs.non_blank() if entity_attrs else {}
            if values:
                pending.append((entity_id, values))
            else:
                result.skipped_ids.append(entity_id)

        for chunk in _chunks(pending, self.attribute_group_size):
            mutations = []
            for idx, (entity_id, values) in enumerate(chunk):
                metafields = [
                    {
                        "ownerId": entity_id,
                        "namespace": METAFIELD_NAMESPACE,
                        "key": ATTRIBUTE_METAFIELD_KEYS[key],
                        "type": METAFIELD_TYPE,
                        "value": value,
                    }
                    for key, value in values.items()
                ]
                mutations.append(
                    AliasedMutation(
                        alias=f"m{idx}",
                        entity_id=entity_id,
                        field_name="metafieldsSet",
                        arguments=(
                            Argument("metafields", "[MetafieldsSetInput!]!", metafields),
                        ),
                    )
                )
            result.documents.append(MutationDocument(mutations, operation_name="SetAttributes"))

        if result.skipped_ids:
            logger.debug("blank_attributes_skipped", count=len(result.skipped_ids))
        return result
