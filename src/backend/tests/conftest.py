import os
import sys


# Ensure `src/backend` is on sys.path so imports like `import common...` work,
# even when pytest's rootdir is the repository root (pyproject testpaths).
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

import pytest

from common.conformance_engine.context import build_context
from common.conformance_engine.probe import Headers, ProbeRequest, ProbeResponse


SERVICE_ROOT = "http://svc.example/odata"

V4_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="4.0" xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx">
  <edmx:DataServices>
    <Schema Namespace="Demo" Alias="Self" xmlns="http://docs.oasis-open.org/odata/ns/edm">
      <EntityType Name="Product">
        <Key><PropertyRef Name="Id"/></Key>
        <Property Name="Id" Type="Edm.Int32" Nullable="false"/>
        <Property Name="Name" Type="Edm.String"/>
        <Property Name="Thumbnail" Type="Edm.Binary"/>
        <Property Name="Address" Type="Self.Address"/>
        <Property Name="Tags" Type="Collection(Edm.String)"/>
        <NavigationProperty Name="Category" Type="Demo.Category"/>
        <NavigationProperty Name="Lines" Type="Collection(Demo.OrderLine)"/>
      </EntityType>
      <EntityType Name="SpecialProduct" BaseType="Demo.Product">
        <Property Name="Discount" Type="Edm.Decimal"/>
        <NavigationProperty Name="Supplier" Type="Demo.Supplier"/>
      </EntityType>
      <EntityType Name="Category">
        <Key><PropertyRef Name="Code"/></Key>
        <Property Name="Code" Type="Edm.String" Nullable="false"/>
        <NavigationProperty Name="Products" Type="Collection(Demo.Product)"/>
      </EntityType>
      <EntityType Name="Supplier">
        <Key><PropertyRef Name="Id"/></Key>
        <Property Name="Id" Type="Edm.Int32" Nullable="false"/>
      </EntityType>
      <EntityType Name="OrderLine">
        <Key><PropertyRef Name="OrderId"/><PropertyRef Name="LineNo"/></Key>
        <Property Name="OrderId" Type="Edm.Int32" Nullable="false"/>
        <Property Name="LineNo" Type="Edm.Int16" Nullable="false"/>
      </EntityType>
      <EntityType Name="Photo" HasStream="true">
        <Key><PropertyRef Name="Id"/></Key>
        <Property Name="Id" Type="Edm.Guid" Nullable="false"/>
      </EntityType>
      <ComplexType Name="Address">
        <Property Name="City" Type="Edm.String"/>
      </ComplexType>
      <Function Name="TopProducts">
        <ReturnType Type="Collection(Demo.Product)"/>
      </Function>
      <EntityContainer Name="Container">
        <EntitySet Name="Products" EntityType="Demo.Product"/>
        <EntitySet Name="Categories" EntityType="Self.Category"/>
        <EntitySet Name="OrderLines" EntityType="Demo.OrderLine"/>
        <EntitySet Name="Photos" EntityType="Demo.Photo"/>
        <Singleton Name="Me" Type="Demo.Supplier"/>
        <FunctionImport Name="TopProducts" Function="Demo.TopProducts" EntitySet="Products"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

V3_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx">
  <edmx:DataServices m:DataServiceVersion="3.0"
      xmlns:m="http://schemas.microsoft.com/ado/2007/08/dataservices/metadata">
    <Schema Namespace="Legacy" xmlns="http://schemas.microsoft.com/ado/2009/11/edm">
      <EntityType Name="Customer">
        <Key><PropertyRef Name="CustomerID"/></Key>
        <Property Name="CustomerID" Type="Edm.String" Nullable="false"/>
        <NavigationProperty Name="Orders" Relationship="Legacy.Customer_Orders" FromRole="Customer" ToRole="Orders"/>
      </EntityType>
      <EntityType Name="Order">
        <Key><PropertyRef Name="OrderID"/></Key>
        <Property Name="OrderID" Type="Edm.Int32" Nullable="false"/>
        <Property Name="Placed" Type="Edm.DateTime"/>
        <NavigationProperty Name="Customer" Relationship="Legacy.Customer_Orders" FromRole="Orders" ToRole="Customer"/>
      </EntityType>
      <EntityType Name="Document" m:HasStream="true">
        <Key><PropertyRef Name="Id"/></Key>
        <Property Name="Id" Type="Edm.Int32" Nullable="false"/>
      </EntityType>
      <Association Name="Customer_Orders">
        <End Type="Legacy.Customer" Role="Customer" Multiplicity="0..1"/>
        <End Type="Legacy.Order" Role="Orders" Multiplicity="*"/>
      </Association>
      <EntityContainer Name="LegacyEntities" m:IsDefaultEntityContainer="true">
        <EntitySet Name="Customers" EntityType="Legacy.Customer"/>
        <EntitySet Name="Orders" EntityType="Legacy.Order"/>
        <EntitySet Name="Documents" EntityType="Legacy.Document"/>
        <FunctionImport Name="RecentOrders" ReturnType="Collection(Legacy.Order)" EntitySet="Orders" m:HttpMethod="GET"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

V4_SERVICE_DOCUMENT = (
    '{"@odata.context":"http://svc.example/odata/$metadata","value":['
    '{"name":"Products","kind":"EntitySet","url":"Products"},'
    '{"name":"Me","kind":"Singleton","url":"Me"}]}'
)

JSON_V4 = {"Content-Type": "application/json;odata.metadata=minimal", "OData-Version": "4.0"}


@pytest.fixture
def v4_metadata() -> str:
    return V4_METADATA


@pytest.fixture
def v3_metadata() -> str:
    return V3_METADATA


@pytest.fixture
def make_response():
    def _make(
        *,
        uri: str = SERVICE_ROOT,
        status: int | None = 200,
        body: bytes | str = b"",
        headers=None,
    ) -> ProbeResponse:
        raw = body.encode("utf-8") if isinstance(body, str) else body
        return ProbeResponse(uri=uri, status=status, headers=Headers.of(headers), body=raw)

    return _make


@pytest.fixture
def make_ctx(make_response):
    def _make(
        *,
        uri: str = SERVICE_ROOT,
        body: bytes | str = b"",
        headers=None,
        request_headers=None,
        status: int | None = 200,
        metadata: str | None = None,
        service_document: str | None = None,
        service_root: str | None = SERVICE_ROOT,
        live: bool = True,
    ):
        request = ProbeRequest(uri=uri, headers=Headers.of(request_headers))
        response = make_response(uri=uri, status=status, body=body, headers=headers)
        return build_context(
            request,
            response,
            metadata_document=metadata,
            service_document=service_document,
            service_root=service_root,
            live=live,
        )

    return _make


class FakeFetcher:
    """Serves canned responses by URI and records every call (uri, headers)."""

    def __init__(self, routes=None, default=None):
        self.routes = dict(routes or {})
        self.default = default
        self.calls = []

    def get_or_fetch(self, uri, headers=None):
        self.calls.append((uri, Headers.of(headers)))
        outcome = self.routes.get(uri, self.default)
        if outcome is None:
            return ProbeResponse(uri=uri, status=404, headers=Headers(), body=b"")
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(uri, Headers.of(headers))
        return outcome


@pytest.fixture
def make_fetcher():
    def _make(routes=None, default=None) -> FakeFetcher:
        return FakeFetcher(routes, default)

    return _make
