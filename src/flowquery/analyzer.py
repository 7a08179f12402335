import json
import logging
import os

import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import networkx as nx
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

CATEGORY_COLORS = {
    'condition': '#FFCC99',
    'switch': '#FFCC99',
    'loop': '#E8DAEF',
    'scope': '#F5B7B1',
    'expression': '#C2FABC',
    'child_flow': '#AED6F1',
    'api_call': '#99CCFF',
    'data_operation': '#FFFFE0',
    'variable': '#D5F5E3',
    'control': '#D7DBDD',
    'trigger': '#FF9966',
}


class FlowAnalytics:
    def __init__(self, csv_path, json_path):
        self.df = pd.read_csv(csv_path, keep_default_na=False)
        with open(json_path, 'r', encoding='utf-8') as f:
            self.graph_data = json.load(f)

        # Parse run-after columns
        self.df['predecessor_count'] = self.df['predecessors'].astype(str).apply(lambda x: len(x.split(';')) if x else 0).astype(int)
        self.df['has_run_after'] = self.df['has_run_after'].astype(str).str.lower() == 'true'
        self.df['depth'] = pd.to_numeric(self.df['depth'], errors='coerce').fillna(1).astype(int)

    def basic_stats(self):
        """Generate basic statistics"""
        stats = {
            'Category Distribution': self.df['category'].value_counts().to_dict(),
            'Connector Usage': self.df[self.df['connector'] != '']['connector'].value_counts().to_dict(),
            'Actions Without Run After': self.df[~self.df['has_run_after']]['path'].tolist(),
            'Depth': {
                'Max': int(self.df['depth'].max()) if len(self.df) else 0,
                'Average': float(self.df['depth'].mean()) if len(self.df) else 0.0,
            },
            'Most Dependent': self.df.nlargest(10, 'predecessor_count')[['path', 'category', 'predecessor_count']].to_dict('records'),
        }
        return stats

    def complexity_analysis(self):
        """Analyze flow complexity on the run-after graph"""
        metrics = {}

        G = self.build_action_graph()
        metrics['graph_density'] = nx.density(G) if len(G) > 0 else 0
        metrics['weakly_connected_components'] = nx.number_weakly_connected_components(G) if len(G) > 0 else 0
        metrics['is_dag'] = nx.is_directed_acyclic_graph(G) if len(G) > 0 else True

        if len(G) > 0:
            centrality = nx.betweenness_centrality(G)
            metrics['bottlenecks'] = sorted(centrality.items(), key=lambda x: x[1], reverse=True)[:5]
            if metrics['is_dag']:
                metrics['longest_path'] = nx.dag_longest_path(G)

        metrics['avg_fan_in'] = float(self.df['predecessor_count'].mean()) if len(self.df) else 0.0
        metrics['max_fan_in'] = int(self.df['predecessor_count'].max()) if len(self.df) else 0

        return metrics

    def build_action_graph(self):
        """Build NetworkX graph from the exported action graph"""
        G = nx.DiGraph()

        for node in self.graph_data.get('nodes', []):
            G.add_node(node['id'], **{k: v for k, v in node.items() if k != 'id'})

        for edge in self.graph_data.get('edges', []):
            G.add_edge(edge['source'], edge['target'], type=edge['type'])

        return G


class FlowVisualizer:
    def __init__(self, analytics):
        self.analytics = analytics
        self.df = analytics.df
        plt.style.use('default')
        plt.rcParams['figure.facecolor'] = 'white'
        plt.rcParams['axes.facecolor'] = 'white'
        plt.rcParams['axes.grid'] = True
        plt.rcParams['grid.alpha'] = 0.3

    def _save(self, fig, save_path, dpi=150):
        fig.tight_layout()
        fig.savefig(save_path, dpi=dpi, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"Saved {save_path}")
        return fig

    def plot_category_distribution(self, save_path='category_distribution.png'):
        """Pie charts of action categories and connector usage"""
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(14, 6))

        category_counts = self.df['category'].value_counts()
        colors1 = [CATEGORY_COLORS.get(c, '#D3D3D3') for c in category_counts.index]
        ax1.pie(category_counts.values, labels=category_counts.index, autopct='%1.1f%%', colors=colors1)
        ax1.set_title('Action Category Distribution', fontsize=14, fontweight='bold')

        connector_counts = self.df[self.df['connector'] != '']['connector'].value_counts()
        if len(connector_counts):
            colors2 = plt.cm.Set3(np.linspace(0, 1, len(connector_counts)))
            ax2.pie(connector_counts.values, labels=connector_counts.index, autopct='%1.1f%%', colors=colors2)
        else:
            ax2.text(0.5, 0.5, 'No connector actions', ha='center', va='center')
            ax2.axis('off')
        ax2.set_title('Connector Usage', fontsize=14, fontweight='bold')

        return self._save(fig, save_path)

    def plot_depth_heatmap(self, save_path='depth_heatmap.png'):
        """Heatmap of action counts by category and nesting depth"""
        pivot = pd.crosstab(self.df['category'], self.df['depth'])

        fig, ax = plt.subplots(figsize=(10, 6))
        data = pivot.values
        im = ax.imshow(data, cmap='YlOrRd', aspect='auto')

        ax.set_xticks(np.arange(len(pivot.columns)))
        ax.set_yticks(np.arange(len(pivot.index)))
        ax.set_xticklabels(pivot.columns)
        ax.set_yticklabels(pivot.index)

        cbar = plt.colorbar(im, ax=ax)
        cbar.set_label('Actions', rotation=270, labelpad=15)

        for i in range(len(pivot.index)):
            for j in range(len(pivot.columns)):
                ax.text(j, i, f'{data[i, j]:d}', ha="center", va="center", color="black")

        ax.set_title('Actions by Category and Nesting Depth', fontsize=14, fontweight='bold')
        ax.set_xlabel('Depth')
        ax.set_ylabel('Category')

        return self._save(fig, save_path)

    def plot_action_network(self, save_path='action_network.png', max_nodes=100):
        """Network visualization of run-after and containment edges"""
        G = self.analytics.build_action_graph()
        G.remove_nodes_from(list(nx.isolates(G)))

        if len(G) > max_nodes:
            degree_dict = dict(G.degree())
            top_nodes = sorted(degree_dict.items(), key=lambda x: x[1], reverse=True)[:max_nodes]
            G = G.subgraph([n for n, d in top_nodes])

        if len(G) == 0:
            logger.info("No connected actions to visualize")
            return None

        fig, ax = plt.subplots(figsize=(20, 15))
        pos = nx.spring_layout(G, k=2, iterations=50, seed=42)

        node_colors = [CATEGORY_COLORS.get(G.nodes[n].get('category'), '#D3D3D3') for n in G.nodes()]
        run_after = [(u, v) for u, v, d in G.edges(data=True) if d.get('type') != 'contains']
        contains = [(u, v) for u, v, d in G.edges(data=True) if d.get('type') == 'contains']

        nx.draw_networkx_nodes(G, pos, node_color=node_colors, node_size=300, alpha=0.9, ax=ax)
        nx.draw_networkx_edges(G, pos, edgelist=run_after, alpha=0.6, arrows=True, ax=ax, edge_color='gray', arrowsize=10)
        nx.draw_networkx_edges(G, pos, edgelist=contains, alpha=0.4, arrows=True, ax=ax, edge_color='gray',
                               style='dashed', arrowsize=8)
        nx.draw_networkx_labels(G, pos, labels={n: str(n).rsplit('/', 1)[-1] for n in G.nodes()}, font_size=8, ax=ax)

        legend_elements = [mpatches.Patch(color=color, label=category.replace('_', ' ').title())
                           for category, color in CATEGORY_COLORS.items()]
        ax.legend(handles=legend_elements, loc='upper left')

        ax.set_title('Flow Action Network', fontsize=16, fontweight='bold')
        ax.axis('off')

        return self._save(fig, save_path, dpi=200)

    def plot_complexity_metrics(self, save_path='complexity_metrics.png'):
        """Bar charts of complexity metrics"""
        fig, axes = plt.subplots(2, 2, figsize=(14, 10))

        top_dependent = self.df.nlargest(10, 'predecessor_count')
        y_pos = np.arange(len(top_dependent))
        axes[0, 0].barh(y_pos, top_dependent['predecessor_count'].values, color='steelblue')
        axes[0, 0].set_yticks(y_pos)
        axes[0, 0].set_yticklabels(top_dependent['action'].values)
        axes[0, 0].set_xlabel('Run-after predecessors')
        axes[0, 0].set_title('Top 10 Most Dependent Actions', fontweight='bold')
        axes[0, 0].grid(axis='x', alpha=0.3)

        by_depth = self.df['depth'].value_counts().sort_index()
        x_pos = np.arange(len(by_depth))
        axes[0, 1].bar(x_pos, by_depth.values, color='coral')
        axes[0, 1].set_xticks(x_pos)
        axes[0, 1].set_xticklabels(by_depth.index)
        axes[0, 1].set_xlabel('Nesting depth')
        axes[0, 1].set_ylabel('Actions')
        axes[0, 1].set_title('Actions per Nesting Depth', fontweight='bold')
        axes[0, 1].grid(axis='y', alpha=0.3)

        declared = int(self.df['has_run_after'].sum())
        axes[1, 0].bar(['No runAfter', 'Has runAfter'], [len(self.df) - declared, declared],
                       color=['salmon', 'lightgreen'])
        axes[1, 0].set_ylabel('Actions')
        axes[1, 0].set_title('Run-after Coverage', fontweight='bold')
        axes[1, 0].grid(axis='y', alpha=0.3)

        branches = self.df['branch'].replace('', 'top level').value_counts()
        colors4 = plt.cm.Pastel1(np.linspace(0, 1, len(branches)))
        if len(branches):
            axes[1, 1].pie(branches.values, labels=branches.index, autopct='%1.1f%%', colors=colors4)
        axes[1, 1].set_title('Actions by Branch', fontweight='bold')

        fig.suptitle('Flow Complexity Analysis', fontsize=16, fontweight='bold', y=1.02)
        return self._save(fig, save_path)


def generate_analysis_report(csv_path, json_path, output_dir='.'):
    """Generate complete analysis with visualizations"""
    analytics = FlowAnalytics(csv_path, json_path)
    viz = FlowVisualizer(analytics)

    stats = analytics.basic_stats()
    complexity = analytics.complexity_analysis()

    if len(analytics.df) == 0:
        logger.warning("No actions exported, skipping visualizations")
    else:
        logger.info("Generating visualizations...")
        viz.plot_category_distribution(os.path.join(output_dir, 'category_distribution.png'))
        viz.plot_depth_heatmap(os.path.join(output_dir, 'depth_heatmap.png'))
        viz.plot_complexity_metrics(os.path.join(output_dir, 'complexity_metrics.png'))

        # Only plot network for smaller flows
        if len(analytics.df) < 200:
            viz.plot_action_network(os.path.join(output_dir, 'action_network.png'))

    with open(os.path.join(output_dir, 'analysis_report.md'), 'w', encoding='utf-8') as f:
        f.write("# Flow Analysis Report\n\n")

        f.write("## Summary Statistics\n\n")
        f.write(f"- Total Actions: {len(analytics.df)}\n")
        f.write(f"- Maximum Nesting Depth: {stats['Depth']['Max']}\n")
        f.write(f"- Average Nesting Depth: {stats['Depth']['Average']:.2f}\n")
        f.write(f"- Actions Without Run After: {len(stats['Actions Without Run After'])}\n\n")

        f.write("## Complexity Metrics\n\n")
        f.write(f"- Graph Density: {complexity.get('graph_density', 0):.3f}\n")
        f.write(f"- Weakly Connected Components: {complexity.get('weakly_connected_components', 0)}\n")
        f.write(f"- Average Fan-in: {complexity.get('avg_fan_in', 0):.2f}\n")
        if complexity.get('longest_path'):
            f.write(f"- Longest Path: {' -> '.join(complexity['longest_path'])}\n")
        f.write("\n")

        if stats['Connector Usage']:
            f.write("## Connector Usage\n\n")
            for connector, count in stats['Connector Usage'].items():
                f.write(f"- {connector}: {count} actions\n")
            f.write("\n")

        if complexity.get('bottlenecks'):
            f.write("## Potential Bottlenecks\n\n")
            for name, score in complexity['bottlenecks']:
                f.write(f"- {name}: centrality score {score:.3f}\n")

    logger.info(f"Analysis complete! Check {output_dir} for reports and visualizations.")

    return analytics, viz
