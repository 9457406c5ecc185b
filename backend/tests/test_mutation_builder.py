"""Tests for aliased mutation document building and result mapping."""

from channelsync.sync.models import AttributeSet
from channelsync.sync.mutation_builder import (
    METAFIELD_NAMESPACE,
    MutationBuilder,
)

P1 = "gid://shopify/Product/1"
P2 = "gid://shopify/Product/2"
P3 = "gid://shopify/Product/3"
PUB_A = "gid://shopify/Publication/10"
PUB_B = "gid://shopify/Publication/20"


# ============================================================================
# CHANNEL DOCUMENT TESTS
# ============================================================================

class TestChannelDocuments:
    """publishablePublish documents."""

    def test_one_mutation_per_entity_and_channel(self):
        builder = MutationBuilder(mutations_per_request=10)

        result = builder.build_channel_documents([P1, P2], [PUB_A, PUB_B])

        assert len(result.documents) == 1
        assert result.mutation_count == 4
        assert result.documents[0].entity_ids == [P1, P2]

    def test_respects_mutations_per_request(self):
        builder = MutationBuilder(mutations_per_request=4)

        result = builder.build_channel_documents([P1, P2, P3], [PUB_A, PUB_B])

        # 4 // 2 channels = 2 entities per request
        assert [d.entity_ids for d in result.documents] == [[P1, P2], [P3]]

    def test_values_travel_as_variables(self):
        builder = MutationBuilder()
        title_like_id = 'gid://shopify/Product/1") { evil }'

        payload = builder.build_channel_documents([title_like_id], [PUB_A]).documents[0].to_payload()

        assert "evil" not in payload["query"]
        assert payload["variables"]["p0_0_id"] == title_like_id
        assert payload["variables"]["p0_0_input"] == [{"publicationId": PUB_A}]
        assert payload["query"].startswith("mutation PublishProducts(")
        assert "p0_0: publishablePublish(id: $p0_0_id, input: $p0_0_input)" in payload["query"]

    def test_no_publications_skips_everything(self):
        result = MutationBuilder().build_channel_documents([P1, P2], [])

        assert result.documents == []
        assert result.skipped_ids == [P1, P2]


# ============================================================================
# ATTRIBUTE DOCUMENT TESTS
# ============================================================================

class TestAttributeDocuments:
    """metafieldsSet documents."""

    def test_only_non_blank_attributes_sent(self):
        builder = MutationBuilder()
        attrs = AttributeSet(color="Red", size="  ", gender=None)

        payload = builder.build_attribute_documents([P1], attrs).documents[0].to_payload()

        metafields = payload["variables"]["m0_metafields"]
        assert metafields == [
            {
                "ownerId": P1,
                "namespace": METAFIELD_NAMESPACE,
                "key": "color",
                "type": "single_line_text_field",
                "value": "Red",
            }
        ]

    def test_category_maps_to_google_product_category(self):
        payload = (
            MutationBuilder()
            .build_attribute_documents([P1], AttributeSet(category="Apparel & Accessories"))
            .documents[0]
            .to_payload()
        )

        assert payload["variables"]["m0_metafields"][0]["key"] == "google_product_category"

    def test_all_blank_builds_nothing(self):
        result = MutationBuilder().build_attribute_documents([P1, P2], AttributeSet(color=""))

        assert result.documents == []
        assert result.skipped_ids == [P1, P2]

    def test_groups_by_attribute_group_size(self):
        builder = MutationBuilder(attribute_group_size=2)

        result = builder.build_attribute_documents([P1, P2, P3], AttributeSet(color="Blue"))

        assert [d.entity_ids for d in result.documents] == [[P1, P2], [P3]]

    def test_per_entity_attributes(self):
        attributes = {P1: AttributeSet(color="Red"), P2: AttributeSet()}

        result = MutationBuilder().build_attribute_documents([P1, P2, P3], attributes)

        assert result.documents[0].entity_ids == [P1]
        assert result.skipped_ids == [P2, P3]


# ============================================================================
# RESULT MAPPING TESTS
# ============================================================================

class TestEntityErrors:
    """Mapping a response body back to per-entity outcomes."""

    def _document(self):
        builder = MutationBuilder(mutations_per_request=10)
        return builder.build_channel_documents([P1, P2], [PUB_A, PUB_B]).documents[0]

    def test_all_success(self):
        doc = self._document()
        body = {"data": {a: {"userErrors": []} for a in ("p0_0", "p0_1", "p1_0", "p1_1")}}

        assert doc.entity_errors(body) == {P1: None, P2: None}

    def test_user_error_fails_only_that_entity(self):
        doc = self._document()
        body = {
            "data": {
                "p0_0": {"userErrors": []},
                "p0_1": {"userErrors": []},
                "p1_0": {"userErrors": []},
                "p1_1": {"userErrors": [{"field": ["id"], "message": "Product not found"}]},
            }
        }

        assert doc.entity_errors(body) == {P1: None, P2: "Product not found"}

    def test_null_alias_uses_top_level_error_for_path(self):
        doc = self._document()
        body = {
            "data": {"p0_0": {"userErrors": []}, "p0_1": {"userErrors": []}, "p1_0": None, "p1_1": None},
            "errors": [{"message": "Access denied", "path": ["p1_0"]}],
        }

        assert doc.entity_errors(body) == {P1: None, P2: "Access denied"}

    def test_missing_alias_without_error(self):
        doc = self._document()

        result = doc.entity_errors({"data": {}})

        assert result == {P1: "No result returned for mutation", P2: "No result returned for mutation"}
