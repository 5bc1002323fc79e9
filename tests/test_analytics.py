import json
import math
import pathlib
import sys
import unittest
from datetime import datetime, timezone

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.analytics import (
    AggregationError,
    build_growth_summary,
    build_kpi_summary,
    compute_dashboard_analytics,
)
from services.date_ranges import resolve_date_range

# Wednesday 18 Sept 2024; September 2024 starts on a Sunday.
NOW = datetime(2024, 9, 18, 12, 0, tzinfo=timezone.utc)


def _compute(clients=(), receipts=(), invoices=(), events=(), range_type='this_month', now=NOW):
    date_range = resolve_date_range(range_type, now=now)
    return compute_dashboard_analytics(
        list(clients), list(receipts), list(invoices), list(events), date_range, now=now
    )


class EmptyDashboardTests(unittest.TestCase):
    def test_empty_collections_produce_zeroed_model(self):
        model = _compute()
        revenue = model['revenue']
        clients = model['clients']
        self.assertEqual(revenue['totalRevenue'], 0)
        self.assertEqual(revenue['averageTransactionValue'], 0)
        self.assertEqual(revenue['revenueByServiceLine'], [])
        self.assertEqual(revenue['topClients'], [])
        self.assertEqual(clients['totalClients'], 0)
        self.assertEqual(clients['retentionRate'], 0)
        self.assertEqual(clients['clientsByStatus'], [])
        self.assertEqual(model['activity']['eventCompletionRate'], 0)
        self.assertTrue(all(value == 0 for value in model['billing'].values()))

        series = revenue['revenueOverTime']
        self.assertEqual([point['date'] for point in series],
                         ['2024-09-01', '2024-09-08', '2024-09-15', '2024-09-22', '2024-09-29'])
        self.assertTrue(all(point['amount'] == 0 for point in series))
        self.assertEqual(len(clients['clientsOverTime']), 5)

    def test_model_carries_range_and_timestamp(self):
        model = _compute()
        self.assertEqual(model['dateRange'], {
            'rangeType': 'this_month',
            'startDate': '2024-09-01',
            'endDate': '2024-09-30',
            'previousStartDate': '2024-08-02',
            'previousEndDate': '2024-08-31',
        })
        self.assertEqual(model['lastUpdated'], NOW.isoformat())


class RevenueTests(unittest.TestCase):
    def test_service_line_breakdown(self):
        model = _compute(receipts=[
            {'id': 'r1', 'amount': 100, 'status': 'paid', 'serviceLine': 'A', 'paidDate': '2024-09-02T10:00:00Z'},
            {'id': 'r2', 'amount': 300, 'status': 'PAID', 'serviceLine': 'B', 'paidDate': '2024-09-10T10:00:00Z'},
        ])
        revenue = model['revenue']
        self.assertEqual(revenue['totalRevenue'], 400)
        breakdown = [(entry['serviceLineName'], entry['amount'], entry['percentage'])
                     for entry in revenue['revenueByServiceLine']]
        self.assertEqual(breakdown, [('A', 100, 25.0), ('B', 300, 75.0)])
        self.assertEqual([entry['colorIndex'] for entry in revenue['revenueByServiceLine']], [0, 1])
        self.assertEqual(revenue['revenueByServiceLine'][0]['color'], '#5c93ff')
        self.assertEqual(revenue['averageTransactionValue'], 200)

        amounts = {point['date']: point['amount'] for point in revenue['revenueOverTime']}
        self.assertEqual(amounts['2024-09-01'], 100)
        self.assertEqual(amounts['2024-09-08'], 300)

    def test_only_paid_receipts_count_as_revenue(self):
        model = _compute(receipts=[
            {'amount': 50, 'status': 'paid', 'service': 'Audit'},
            {'amount': 70, 'status': 'pending'},
            {'amount': 20, 'status': 'draft'},
        ])
        self.assertEqual(model['revenue']['totalRevenue'], 50)
        self.assertEqual(model['revenue']['revenueByServiceLine'][0]['serviceLineName'], 'Audit')

    def test_breakdown_sums_to_total_revenue(self):
        receipts = [
            {'amount': amount, 'status': 'paid', 'serviceLine': line}
            for amount, line in [(0.1, 'A'), (0.2, 'B'), (0.3, 'A'), (19.99, 'C'), (0.07, 'B')]
        ]
        revenue = _compute(receipts=receipts)['revenue']
        self.assertEqual(sum(entry['amount'] for entry in revenue['revenueByServiceLine']),
                         revenue['totalRevenue'])
        for entry in revenue['revenueByServiceLine']:
            self.assertTrue(0 <= entry['percentage'] <= 100)

    def test_non_finite_amounts_keep_revenue_serialisable(self):
        model = _compute(receipts=[
            {'amount': 'NaN', 'status': 'paid', 'serviceLine': 'A'},
            {'amount': 10, 'status': 'paid', 'serviceLine': 'A'},
        ])
        revenue = model['revenue']
        self.assertEqual(revenue['totalRevenue'], 10)
        self.assertEqual([entry['percentage'] for entry in revenue['revenueByServiceLine']], [100.0])
        json.dumps(model, allow_nan=False)

    def test_palette_wraps_after_eight_service_lines(self):
        receipts = [{'amount': 10, 'status': 'paid', 'serviceLine': f'Line {index}'} for index in range(10)]
        breakdown = _compute(receipts=receipts)['revenue']['revenueByServiceLine']
        self.assertEqual([entry['colorIndex'] for entry in breakdown], [0, 1, 2, 3, 4, 5, 6, 7, 0, 1])

    def test_top_clients_sorted_stable_and_truncated(self):
        clients = [{'id': f'c{index}', 'name': f'Client {index}', 'status': 'active'} for index in range(7)]
        amounts = [100, 500, 300, 500, 50, 300, 20]
        receipts = [
            {'clientId': f'c{index}', 'amount': amount, 'status': 'paid'}
            for index, amount in enumerate(amounts)
        ]
        receipts.append({'clientId': 'c4', 'amount': 25, 'status': 'paid'})
        receipts.append({'clientId': 'ghost', 'amount': 10, 'status': 'paid'})
        receipts.append({'amount': 999, 'status': 'paid'})
        model = _compute(clients=clients, receipts=receipts)

        ranked = model['clients']['topClientsByRevenue']
        self.assertEqual(len(ranked), 5)
        self.assertEqual([entry['clientId'] for entry in ranked], ['c1', 'c3', 'c2', 'c5', 'c0'])
        revenues = [entry['revenue'] for entry in ranked]
        self.assertEqual(revenues, sorted(revenues, reverse=True))
        self.assertEqual(ranked[0]['clientName'], 'Client 1')
        self.assertEqual(ranked[0]['servicesCount'], 1)

        top = model['revenue']['topClients']
        self.assertEqual(top[0], {'clientId': 'c1', 'clientName': 'Client 1', 'totalRevenue': 500})

    def test_unknown_client_name_placeholder(self):
        model = _compute(receipts=[{'clientId': 'ghost', 'amount': 10, 'status': 'paid'}])
        self.assertEqual(model['clients']['topClientsByRevenue'][0]['clientName'], 'Unknown')


class ClientTests(unittest.TestCase):
    def test_status_counts_and_retention(self):
        clients = [
            {'id': '1', 'status': 'active'},
            {'id': '2', 'status': 'ACTIVE'},
            {'id': '3', 'status': 'Prospect'},
            {'id': '4', 'status': 'completed'},
            {'id': '5', 'status': 'archived'},
        ]
        model = _compute(clients=clients)['clients']
        self.assertEqual(model['totalClients'], 5)
        self.assertEqual(model['activeClients'], 2)
        self.assertEqual(model['prospectClients'], 1)
        self.assertEqual(model['completedClients'], 1)
        self.assertEqual(model['inactiveClients'], 0)
        self.assertEqual(model['retentionRate'], 40.0)
        statuses = {entry['status']: entry for entry in model['clientsByStatus']}
        self.assertEqual(set(statuses), {'Active', 'Prospect', 'Completed'})
        self.assertEqual(statuses['Active']['percentage'], 40.0)
        self.assertEqual(statuses['Active']['color'], '#4CAF50')

    def test_new_clients_and_running_total(self):
        clients = [
            {'id': 'old', 'status': 'active', 'createdAt': '2024-08-20T09:00:00Z'},
            {'id': 'new', 'status': 'prospect', 'createdAt': '2024-09-10T09:00:00Z'},
        ]
        model = _compute(clients=clients)['clients']
        self.assertEqual(model['newClientsThisPeriod'], 1)
        series = model['clientsOverTime']
        self.assertEqual(series[0]['totalClients'], 1)
        self.assertEqual(series[1]['newClients'], 1)
        self.assertEqual(series[-1]['totalClients'], 2)

    def test_new_client_window_includes_last_day(self):
        clients = [{'id': 'late', 'createdAt': '2024-09-30T23:30:00Z'}]
        self.assertEqual(_compute(clients=clients)['clients']['newClientsThisPeriod'], 1)


class BillingAndActivityTests(unittest.TestCase):
    def test_overdue_pending_invoice(self):
        model = _compute(invoices=[
            {'id': 'i1', 'amount': 250, 'status': 'pending', 'dueDate': '2024-09-17'},
            {'id': 'i2', 'amount': 100, 'status': 'sent', 'dueDate': '2024-10-01'},
            {'id': 'i3', 'amount': 900, 'status': 'paid', 'dueDate': '2024-01-01'},
        ], receipts=[
            {'amount': 40, 'status': 'draft'},
            {'amount': 60, 'status': 'Pending'},
        ])
        billing = model['billing']
        self.assertEqual(billing['overdueCount'], 1)
        self.assertEqual(billing['overdueAmount'], 250)
        self.assertEqual(billing['pendingInvoices'], 2)
        self.assertEqual(billing['pendingInvoicesAmount'], 350)
        self.assertEqual(billing['pendingReceipts'], 2)
        self.assertEqual(billing['pendingReceiptsAmount'], 100)
        self.assertEqual(billing['totalOutstanding'], 450)

    def test_event_counts_and_completion_rate(self):
        model = _compute(events=[
            {'id': 'e1', 'startTime': '2024-09-20T10:00:00Z', 'status': 'scheduled'},
            {'id': 'e2', 'startTime': '2024-09-10T10:00:00Z', 'status': 'COMPLETED'},
            {'id': 'e3', 'startTime': '2024-09-11T10:00:00Z', 'status': 'cancelled'},
            {'id': 'e4', 'status': 'completed'},
        ])
        activity = model['activity']
        self.assertEqual(activity['upcomingEvents'], 1)
        self.assertEqual(activity['completedEvents'], 2)
        self.assertEqual(activity['eventCompletionRate'], 50.0)
        self.assertEqual(activity['totalConversations'], 0)


class ModelPropertiesTests(unittest.TestCase):
    def test_rates_are_finite_and_bounded(self):
        for clients, events in [([], []), ([{'status': 'active'}], [{'status': 'completed'}])]:
            model = _compute(clients=clients, events=events)
            for value in (model['clients']['retentionRate'], model['activity']['eventCompletionRate']):
                self.assertTrue(math.isfinite(value))
                self.assertTrue(0 <= value <= 100)

    def test_computation_is_idempotent(self):
        kwargs = dict(
            clients=[{'id': 'c1', 'name': 'Ada', 'status': 'active', 'createdAt': '2024-09-03T00:00:00Z'}],
            receipts=[{'clientId': 'c1', 'amount': 120, 'status': 'paid', 'paidDate': '2024-09-04'}],
            invoices=[{'amount': 30, 'status': 'pending', 'dueDate': '2024-09-01'}],
            events=[{'startTime': '2024-09-19T09:00:00Z'}],
        )
        first = json.dumps(_compute(**kwargs), sort_keys=True)
        second = json.dumps(_compute(**kwargs), sort_keys=True)
        self.assertEqual(first, second)

    def test_malformed_date_raises_aggregation_error(self):
        with self.assertRaises(AggregationError):
            _compute(receipts=[{'amount': 10, 'status': 'paid', 'paidDate': 'yesterday-ish'}])

    def test_naive_now_is_treated_as_utc(self):
        model = _compute(now=datetime(2024, 9, 18, 12, 0))
        self.assertEqual(model['lastUpdated'], NOW.isoformat())


class KpiSummaryTests(unittest.TestCase):
    def test_kpi_summary_projects_headline_metrics(self):
        model = _compute(
            clients=[{'id': 'c1', 'status': 'active'}],
            receipts=[{'amount': 75, 'status': 'paid'}, {'amount': 25, 'status': 'draft'}],
            invoices=[{'amount': 40, 'status': 'sent'}],
            events=[{'startTime': '2024-09-25T09:00:00Z'}],
        )
        self.assertEqual(build_kpi_summary(model), {
            'totalRevenue': 75,
            'revenueChange': 0,
            'activeClients': 1,
            'clientChange': 0,
            'pendingInvoices': 1,
            'pendingAmount': 65,
            'upcomingEvents': 1,
            'completedEvents': 0,
            'billableHours': 0,
            'hoursChange': 0,
        })


class GrowthSummaryTests(unittest.TestCase):
    def test_growth_summary_projects_trend_series(self):
        model = _compute(
            clients=[
                {'id': 'c1', 'status': 'active', 'createdAt': '2024-08-01T10:00:00Z'},
                {'id': 'c2', 'status': 'prospect', 'createdAt': '2024-09-10T10:00:00Z'},
            ],
            receipts=[{'clientId': 'c1', 'amount': 90, 'status': 'paid', 'paidDate': '2024-09-02T10:00:00Z'}],
        )
        growth = build_growth_summary(model)
        self.assertEqual(growth['newClients'], 1)
        self.assertEqual(growth['clientRetention'], 50.0)
        self.assertEqual(growth['revenueGrowth'], 0)
        self.assertEqual(
            [point['date'] for point in growth['clientGrowthOverTime']],
            ['2024-09-01', '2024-09-08', '2024-09-15', '2024-09-22', '2024-09-29'],
        )
        self.assertEqual([point['count'] for point in growth['clientGrowthOverTime']], [0, 1, 0, 0, 0])
        self.assertEqual(growth['revenueGrowthOverTime'][0], {'date': '2024-09-01', 'amount': 90})


if __name__ == '__main__':
    unittest.main()
